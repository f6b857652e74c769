"""Streaming relay, SSE framing and the client-side relay consumer."""

from .client import STREAM_FALLBACK_MS, ClientReply, IdleNudger, NudgeBackoff, RelayClient
from .frames import (
    DONE_FRAME,
    HEARTBEAT_FRAME,
    OPEN_FRAME,
    SSEEvent,
    SSEParser,
    encode_data,
    encode_event,
)
from .relay import RelayConfig, RelayResult, StreamingRelay

__all__ = [
    "DONE_FRAME",
    "HEARTBEAT_FRAME",
    "OPEN_FRAME",
    "STREAM_FALLBACK_MS",
    "ClientReply",
    "IdleNudger",
    "NudgeBackoff",
    "RelayClient",
    "RelayConfig",
    "RelayResult",
    "SSEEvent",
    "SSEParser",
    "StreamingRelay",
    "encode_data",
    "encode_event",
]

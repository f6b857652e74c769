"""Turn handling: request types, prompt assembly and orchestration."""

from .orchestrator import DialogueConfig, DialogueOrchestrator, TurnState, TurnTrace
from .prompt import FixedStyleHint, RandomStyleHints, StyleHintProvider, build_messages
from .requests import (
    AddFactRequest,
    ChatRequest,
    InitRequest,
    LearnIdentityRequest,
    NudgeRequest,
    Reply,
    SayRequest,
    parse_request,
    parse_stream_request,
)

__all__ = [
    "AddFactRequest",
    "ChatRequest",
    "DialogueConfig",
    "DialogueOrchestrator",
    "FixedStyleHint",
    "InitRequest",
    "LearnIdentityRequest",
    "NudgeRequest",
    "RandomStyleHints",
    "Reply",
    "SayRequest",
    "StyleHintProvider",
    "TurnState",
    "TurnTrace",
    "build_messages",
    "parse_request",
    "parse_stream_request",
]

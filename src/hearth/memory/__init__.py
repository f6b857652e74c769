"""Per-user conversational memory."""

from .compressor import CompressedContext, ThreadCompressor
from .extractor import extract_name, is_name_fact, name_fact
from .manager import MemoryConfig, MemoryManager
from .models import Identity, Memory, Turn, normalize_fact
from .nudge import NudgePolicy, looks_like_nudge, nudge_allowed, nudge_denial_reason

__all__ = [
    "CompressedContext",
    "Identity",
    "Memory",
    "MemoryConfig",
    "MemoryManager",
    "NudgePolicy",
    "ThreadCompressor",
    "Turn",
    "extract_name",
    "is_name_fact",
    "looks_like_nudge",
    "name_fact",
    "normalize_fact",
    "nudge_allowed",
    "nudge_denial_reason",
]

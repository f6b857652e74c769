"""Language-model completion providers."""

from .base import CompletionProvider, Message
from .groq import GenerationConfig, GroqProvider, translate_error

__all__ = [
    "CompletionProvider",
    "GenerationConfig",
    "GroqProvider",
    "Message",
    "translate_error",
]

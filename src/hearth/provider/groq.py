"""Completion provider backed by the Groq API."""

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any, AsyncIterator

import groq
from groq import AsyncGroq

from ..errors import ProviderError, ProviderTimeout
from .base import Message

logger = logging.getLogger(__name__)


@dataclass
class GenerationConfig:
    """Sampling knobs sent with every completion request."""

    model: str = "llama-3.1-70b-versatile"
    temperature: float = 0.95
    top_p: float = 0.95
    presence_penalty: float = 0.7
    frequency_penalty: float = 0.7


def translate_error(error: Exception) -> ProviderError:
    """Map a Groq SDK exception onto the engine's provider errors."""
    if isinstance(error, (groq.APITimeoutError, asyncio.TimeoutError)):
        return ProviderTimeout(str(error) or "provider call timed out")
    if isinstance(error, groq.RateLimitError):
        return ProviderError(f"rate limited: {error}", kind="rate_limit")
    if isinstance(error, (groq.AuthenticationError, groq.PermissionDeniedError)):
        return ProviderError(f"auth failed: {error}", kind="auth")
    if isinstance(error, groq.APIConnectionError):
        return ProviderError(f"connection failed: {error}", kind="connection")
    if isinstance(error, groq.APIStatusError):
        return ProviderError(f"upstream {error.status_code}: {error}", kind="upstream")
    return ProviderError(str(error), kind="upstream")


class GroqProvider:
    """CompletionProvider implementation that wraps AsyncGroq.

    Example:
        from groq import AsyncGroq
        from hearth.provider import GroqProvider

        provider = GroqProvider(AsyncGroq(api_key="..."))
        text = await provider.complete(messages, 160, timeout=8.0)
    """

    def __init__(
        self,
        client: AsyncGroq | None = None,
        config: GenerationConfig | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            client: The AsyncGroq client to use. Built from GROQ_API_KEY if omitted.
            config: Sampling configuration.
        """
        self._client = client or AsyncGroq(api_key=os.getenv("GROQ_API_KEY"))
        self.config = config or GenerationConfig()

    @property
    def model(self) -> str:
        """Return the model being used."""
        return self.config.model

    def _request(self, messages: list[Message], max_output_tokens: int) -> dict[str, Any]:
        return {
            "model": self.config.model,
            "messages": messages,
            "max_tokens": max_output_tokens,
            "temperature": self.config.temperature,
            "top_p": self.config.top_p,
            "presence_penalty": self.config.presence_penalty,
            "frequency_penalty": self.config.frequency_penalty,
        }

    async def complete(
        self,
        messages: list[Message],
        max_output_tokens: int,
        *,
        timeout: float | None = None,
    ) -> str:
        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(
                    **self._request(messages, max_output_tokens)
                ),
                timeout=timeout,
            )
        except (groq.APIError, asyncio.TimeoutError) as e:
            raise translate_error(e) from e

        if not response.choices:
            raise ProviderError("completion returned no choices", kind="empty")
        return response.choices[0].message.content or ""

    async def stream(
        self,
        messages: list[Message],
        max_output_tokens: int,
        *,
        timeout: float | None = None,
    ) -> AsyncIterator[str]:
        try:
            chunks = await asyncio.wait_for(
                self._client.chat.completions.create(
                    **self._request(messages, max_output_tokens), stream=True
                ),
                timeout=timeout,
            )
        except (groq.APIError, asyncio.TimeoutError) as e:
            raise translate_error(e) from e

        try:
            async for chunk in chunks:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    yield delta
        except groq.APIError as e:
            raise translate_error(e) from e

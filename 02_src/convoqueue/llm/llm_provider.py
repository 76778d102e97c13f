"""Inference provider using the Anthropic API."""

import os
from typing import Protocol

import anthropic

from ..errors import InferenceError

DEFAULT_MODEL = "claude-3-5-sonnet-20241022"


class ILLMProvider(Protocol):
    """Abstraction for the inference call: formatted history -> reply text."""

    async def complete(
        self,
        messages: list[dict],  # [{"role": "user", "content": "..."}]
        system: str | None = None,
        max_tokens: int = 1024,
    ) -> str:
        """Generate a reply; raises InferenceError on failure."""
        ...


class LLMProvider:
    """Anthropic Claude API provider."""

    def __init__(self, api_key: str | None = None, model: str | None = None):
        self._api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not self._api_key:
            raise ValueError("ANTHROPIC_API_KEY environment variable not set")

        self._model = model or os.getenv("LLM_MODEL", DEFAULT_MODEL)
        self._client = anthropic.AsyncAnthropic(api_key=self._api_key)

    async def complete(
        self,
        messages: list[dict],
        system: str | None = None,
        max_tokens: int = 1024,
    ) -> str:
        """Generate completion using Claude API."""
        if not messages:
            raise InferenceError("No messages to send", error_type="empty_context")

        kwargs = {
            "model": self._model,
            "messages": messages,
            "max_tokens": max_tokens,
        }
        if system:
            kwargs["system"] = system

        try:
            response = await self._client.messages.create(**kwargs)
        except anthropic.RateLimitError as e:
            raise InferenceError(f"LLM rate limited: {e}", error_type="rate_limit") from e
        except anthropic.APITimeoutError as e:
            raise InferenceError(f"LLM timed out: {e}", error_type="timeout") from e
        except anthropic.APIError as e:
            raise InferenceError(f"LLM API error: {e}", error_type="api_error") from e

        text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        if not text.strip():
            raise InferenceError("LLM returned an empty reply", error_type="empty_response")
        return text

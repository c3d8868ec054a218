"""Abstract LLM provider protocol and shared helpers."""

import re
from typing import Any, Protocol


class ProviderError(Exception):
    """Provider call failed. ``retryable`` marks transport and server-side errors."""

    def __init__(self, message: str, retryable: bool, status_code: int | None = None):
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code


class LLMProvider(Protocol):
    """Protocol for LLM backends (OpenAI, Anthropic)."""

    async def complete(self, system: str, user: str, **kwargs: Any) -> str:
        """Return raw text completion. Raises ProviderError."""
        ...


def strip_code_fence(raw: str) -> str:
    """Remove a surrounding markdown code block, if any."""
    text = (raw or "").strip()
    if text.startswith("```"):
        text = re.sub(r"^```\w*\n?", "", text)
        text = re.sub(r"\n?```\s*$", "", text)
    return text.strip()


def is_retryable_status(status_code: int | None) -> bool:
    return status_code is not None and (status_code == 429 or status_code >= 500)

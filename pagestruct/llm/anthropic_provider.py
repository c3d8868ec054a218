"""Anthropic LLM implementation; JSON output is requested in the prompt."""

from typing import Any

from anthropic import APIConnectionError, APIStatusError, AsyncAnthropic

from pagestruct.llm.base import ProviderError, is_retryable_status


class AnthropicProvider:
    """Anthropic messages API returning raw text expected to be JSON."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "claude-3-5-sonnet-20241022",
        timeout: float = 30.0,
    ):
        self._api_key = api_key
        self._timeout = timeout
        self._model = model
        self._client: AsyncAnthropic | None = None

    def _get_client(self) -> AsyncAnthropic:
        if self._client is None:
            if not self._api_key:
                raise ProviderError("Anthropic client not configured: missing API key", retryable=False)
            self._client = AsyncAnthropic(api_key=self._api_key, timeout=self._timeout, max_retries=0)
        return self._client

    async def complete(self, system: str, user: str, **kwargs: Any) -> str:
        client = self._get_client()
        try:
            response = await client.messages.create(
                model=kwargs.get("model") or self._model,
                max_tokens=kwargs.get("max_tokens", 4096),
                system=system,
                messages=[{"role": "user", "content": user}],
                temperature=kwargs.get("temperature", 0),
            )
        except APIConnectionError as e:
            raise ProviderError(f"Anthropic connection error: {e}", retryable=True) from e
        except APIStatusError as e:
            raise ProviderError(
                f"Anthropic API error {e.status_code}: {str(e)[:200]}",
                retryable=is_retryable_status(e.status_code),
                status_code=e.status_code,
            ) from e
        return "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )

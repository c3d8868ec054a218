"""OpenAI LLM implementation with JSON-object output."""

from typing import Any

from openai import APIConnectionError, APIStatusError, AsyncOpenAI, OpenAIError

from pagestruct.llm.base import ProviderError, is_retryable_status


class OpenAIProvider:
    """OpenAI chat completion constrained to a JSON object response."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-4o-mini",
        timeout: float = 30.0,
    ):
        self._api_key = api_key
        self._timeout = timeout
        self._model = model
        self._client: AsyncOpenAI | None = None

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            try:
                # Retries are driven by the structurer, not the SDK
                self._client = AsyncOpenAI(api_key=self._api_key, timeout=self._timeout, max_retries=0)
            except OpenAIError as e:  # missing API key
                raise ProviderError(f"OpenAI client not configured: {e}", retryable=False) from e
        return self._client

    async def complete(self, system: str, user: str, **kwargs: Any) -> str:
        client = self._get_client()
        try:
            response = await client.chat.completions.create(
                model=kwargs.get("model") or self._model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                response_format={"type": "json_object"},
                temperature=kwargs.get("temperature", 0),
            )
        except APIConnectionError as e:  # includes APITimeoutError
            raise ProviderError(f"OpenAI connection error: {e}", retryable=True) from e
        except APIStatusError as e:
            raise ProviderError(
                f"OpenAI API error {e.status_code}: {str(e)[:200]}",
                retryable=is_retryable_status(e.status_code),
                status_code=e.status_code,
            ) from e
        msg = response.choices[0].message
        return msg.content or ""

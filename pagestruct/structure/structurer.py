"""Schema-driven structuring: page text + descriptor -> validated JSON object."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from pagestruct.errors import LLMFailure, SchemaValidationFailed
from pagestruct.llm.base import LLMProvider, ProviderError, strip_code_fence
from pagestruct.structure.prompts import SYSTEM_PROMPT, build_correction_message, build_user_message
from pagestruct.structure.schema_client import SchemaDescriptor
from pagestruct.structure.validation import validate_instance

logger = logging.getLogger(__name__)

_OUTPUT_PREVIEW_CHARS = 2000


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, ProviderError):
        return exc.retryable
    return isinstance(exc, (httpx.TransportError, asyncio.TimeoutError))


def parse_model_output(raw: str, schema: dict[str, Any]) -> tuple[dict[str, Any] | None, list[str]]:
    """Parse a completion as JSON and validate it. Returns (data, errors)."""
    text = strip_code_fence(raw)
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        return None, [f"$: output is not valid JSON ({e})"]
    if not isinstance(data, dict):
        return None, ["$: expected a JSON object at the top level"]
    if not data:
        return None, ["$: output is an empty object"]
    errors = validate_instance(data, schema)
    return (data if not errors else None), errors


class Structurer:
    """
    Turn raw page text into JSON that matches the client's schema.

    Transport and server errors from the provider are retried with
    exponential backoff (``max_attempts`` calls in total). Output that is not
    JSON or does not match the schema gets exactly one corrective re-prompt.
    """

    def __init__(
        self,
        provider: LLMProvider,
        max_attempts: int = 3,
        backoff_base: float = 1.0,
        backoff_max: float = 8.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._provider = provider
        self.max_attempts = max(1, max_attempts)
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._sleep = sleep

    async def structure(self, raw_content: str, descriptor: SchemaDescriptor) -> dict[str, Any]:
        schema = descriptor.json_schema
        user = build_user_message(raw_content, descriptor.prompt, schema)
        output = await self._complete(user, last_output=None)

        data, errors = parse_model_output(output, schema)
        if data is not None:
            return data

        logger.info("Model output failed validation (%d issue(s)); re-prompting once", len(errors))
        correction = build_correction_message(raw_content, descriptor.prompt, schema, output, errors)
        output = await self._complete(correction, last_output=output)

        data, errors = parse_model_output(output, schema)
        if data is not None:
            return data

        raise SchemaValidationFailed(
            "Model output did not match the schema after a corrective attempt",
            details={"errors": errors[:20], "last_output": output[:_OUTPUT_PREVIEW_CHARS]},
        )

    async def _complete(self, user: str, last_output: str | None) -> str:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_base, max=self.backoff_max),
            retry=retry_if_exception(_is_transient),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._provider.complete(SYSTEM_PROMPT, user)
        except (ProviderError, httpx.TransportError, asyncio.TimeoutError) as e:
            attempts = retrying.statistics.get("attempt_number", 1)
            details: dict[str, Any] = {
                "attempts": attempts,
                "last_output": (last_output or "")[:_OUTPUT_PREVIEW_CHARS],
            }
            if isinstance(e, ProviderError) and e.status_code is not None:
                details["status_code"] = e.status_code
            raise LLMFailure(f"Model provider failed: {e}", details=details) from e
        raise LLMFailure("Model provider returned no result", details={"last_output": last_output or ""})

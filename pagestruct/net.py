"""Outbound GET with bounded retry, shared by the page fetcher and the schema client."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


def is_transient(exc: BaseException) -> bool:
    """Connection-level failures. Timeouts are excluded: the call's time budget is already spent."""
    return isinstance(exc, httpx.TransportError) and not isinstance(exc, httpx.TimeoutException)


async def get_with_retry(
    client: httpx.AsyncClient,
    url: str,
    *,
    timeout: float,
    headers: dict[str, str] | None = None,
    follow_redirects: bool = True,
    attempts: int = 2,
    backoff: float = 0.5,
    sleep: Sleep = asyncio.sleep,
) -> httpx.Response:
    """GET ``url``; transient transport errors are retried, everything else is raised as-is."""
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_exponential(multiplier=backoff, max=max(backoff * 4, 0)),
        retry=retry_if_exception(is_transient),
        before_sleep=before_sleep_log(logger, logging.INFO),
        sleep=sleep,
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            return await client.get(
                url, headers=headers, timeout=timeout, follow_redirects=follow_redirects
            )
    raise httpx.TransportError(f"No response from {url}")

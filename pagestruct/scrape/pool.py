"""Bounded pool of headless browsing slots."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from pagestruct.errors import ResourceExhausted

logger = logging.getLogger(__name__)


class HeadlessPool:
    """
    Caps concurrent headless sessions at ``max_sessions``.

    ``acquire()`` waits up to ``acquire_timeout`` seconds for a free slot and
    raises ResourceExhausted otherwise. The slot is released on every exit
    path of the ``async with`` block, including cancellation.
    """

    def __init__(self, max_sessions: int = 5, acquire_timeout: float = 10.0):
        if max_sessions < 1:
            raise ValueError("max_sessions must be >= 1")
        self.max_sessions = max_sessions
        self.acquire_timeout = acquire_timeout
        self._sem = asyncio.Semaphore(max_sessions)
        self.in_use = 0
        self.peak_in_use = 0

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[None]:
        try:
            await asyncio.wait_for(self._sem.acquire(), timeout=self.acquire_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Headless pool exhausted (%d/%d in use) after %.1fs",
                self.in_use, self.max_sessions, self.acquire_timeout,
            )
            raise ResourceExhausted(
                "No headless browsing session available",
                details={
                    "resource_exhausted": True,
                    "max_sessions": self.max_sessions,
                    "acquire_timeout": self.acquire_timeout,
                },
            ) from None
        self.in_use += 1
        self.peak_in_use = max(self.peak_in_use, self.in_use)
        try:
            yield
        finally:
            self.in_use -= 1
            self._sem.release()

    def snapshot(self) -> dict[str, int]:
        return {"in_use": self.in_use, "max": self.max_sessions, "peak": self.peak_in_use}

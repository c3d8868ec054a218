"""
Background cleanup task.

Every ``interval`` seconds, deletes job records whose ``expires_at`` has
passed. Expired jobs are already unreadable; the sweeper only reclaims
their storage. It never touches running workers: a worker whose record is
deleted under it gets NotFound on its next write and stops quietly.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from pagestruct.jobs.models import utcnow
from pagestruct.jobs.store import JobStore

logger = logging.getLogger(__name__)


class CleanupSweeper:
    def __init__(self, store: JobStore, interval: float = 3600.0):
        self.store = store
        self.interval = interval
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="job-cleanup-sweeper")
        logger.info("Cleanup sweeper started (every %.0fs)", self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Cleanup sweeper stopped")

    async def sweep_once(self, now: datetime | None = None) -> int:
        """Delete every expired record; returns how many were removed."""
        now = now or utcnow()
        deleted = 0
        for job_id in await self.store.list_expired(now):
            if await self.store.delete(job_id):
                deleted += 1
        if deleted:
            logger.info("Deleted %d expired job(s)", deleted)
        return deleted

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep_once()
            except Exception:
                # Log but never crash the background task
                logger.exception("Cleanup sweep failed")

"""Job orchestration: submission, the per-job worker, status reads and cancellation.

Submission validates input synchronously and returns as soon as the job is
stored; one ``asyncio.Task`` per job then drives it through

    queued -> scraping -> parsing -> completed | failed

with ``canceled`` reachable at the stage boundaries. Reads go straight to the
job store and never wait on a worker.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Callable

from pagestruct.errors import (
    Internal,
    InvalidTransition,
    JobTimeout,
    NotFound,
    PageStructError,
)
from pagestruct.jobs.models import Job, JobOptions, JobProgress, JobStatus, utcnow
from pagestruct.jobs.store import JobStore, new_job_id
from pagestruct.scrape.extractors import ContentExtractor
from pagestruct.scrape.url_guard import URLGuard
from pagestruct.structure.schema_client import SchemaClient
from pagestruct.structure.structurer import Structurer

logger = logging.getLogger(__name__)

# (job, requesting client_id) -> allowed?
Authorizer = Callable[[Job, str | None], bool]


class _JobGone(Exception):
    """The record was removed (expired and swept) while the worker was running."""


class JobOrchestrator:
    def __init__(
        self,
        store: JobStore,
        extractor: ContentExtractor,
        schema_client: SchemaClient,
        structurer: Structurer,
        guard: URLGuard | None = None,
        job_ttl: timedelta = timedelta(hours=24),
        soft_timeout: float = 30.0,
        hard_timeout: float = 60.0,
        authorize: Authorizer | None = None,
    ):
        self.store = store
        self.extractor = extractor
        self.schema_client = schema_client
        self.structurer = structurer
        self.guard = guard or URLGuard()
        self.job_ttl = job_ttl
        self.soft_timeout = soft_timeout
        self.hard_timeout = hard_timeout
        self._authorize = authorize
        self._tasks: dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def submit(
        self,
        url: str,
        schema_endpoint: str,
        client_id: str = "",
        metadata: dict[str, Any] | None = None,
        options: JobOptions | None = None,
    ) -> Job:
        """Validate, store a queued job and start its worker. Raises InvalidInput."""
        await self.guard.check(url, field="url")
        await self.guard.check(schema_endpoint, field="schema_endpoint")

        job = Job.new(
            job_id=new_job_id(),
            url=url.strip(),
            schema_endpoint=schema_endpoint.strip(),
            ttl=self.job_ttl,
            client_id=client_id,
            metadata=metadata,
            options=options,
        )
        await self.store.create(job)
        self.start_worker(job.job_id)
        logger.info("Job %s queued for %s (client=%s)", job.job_id, job.url, client_id or "-")
        return job

    async def get_status(self, job_id: str, client_id: str | None = None) -> Job:
        """Latest stored snapshot. Raises NotFound for unknown or expired ids."""
        job = await self.store.get(job_id)
        self._check_access(job, client_id)
        return job

    async def cancel(self, job_id: str, client_id: str | None = None) -> Job:
        """Request cancellation; takes effect at the next stage boundary."""
        job = await self.store.get(job_id)
        self._check_access(job, client_id)
        if job.is_terminal or job.cancel_requested:
            return job
        logger.info("Job %s: cancellation requested (status=%s)", job_id, job.status.value)
        return await self.store.update(job_id, cancel_requested=True)

    def estimated_completion(self, job: Job) -> datetime:
        return job.created_at + timedelta(seconds=self.soft_timeout)

    def start_worker(self, job_id: str) -> asyncio.Task:
        """Start the single worker for ``job_id``; refuses if one is still running."""
        existing = self._tasks.get(job_id)
        if existing is not None and not existing.done():
            raise Internal(f"A worker is already running for job {job_id}", details={"job_id": job_id})
        task = asyncio.create_task(self._run(job_id), name=f"parse-job-{job_id}")
        self._tasks[job_id] = task

        def _forget(t: asyncio.Task) -> None:
            if self._tasks.get(job_id) is t:
                del self._tasks[job_id]

        task.add_done_callback(_forget)
        return task

    async def wait(self, job_id: str) -> Job:
        """Wait for the job's worker to finish, then return the stored record."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.shield(task)
        return await self.store.get(job_id)

    @property
    def active_workers(self) -> int:
        return sum(1 for t in self._tasks.values() if not t.done())

    async def shutdown(self) -> None:
        """Cancel running workers; their jobs are recorded as failed."""
        tasks = [t for t in self._tasks.values() if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Stopped %d in-flight worker(s)", len(tasks))

    async def recover_interrupted(self) -> int:
        """Fail jobs left non-terminal by a previous process (persistent stores only)."""
        recovered = 0
        for job_id in await self.store.list_ids():
            if job_id in self._tasks:
                continue
            try:
                job = await self.store.get(job_id)
            except NotFound:
                continue
            if not job.is_terminal:
                await self._fail(job_id, Internal("Job interrupted by a service restart"))
                recovered += 1
        if recovered:
            logger.warning("Marked %d interrupted job(s) as failed", recovered)
        return recovered

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    async def _run(self, job_id: str) -> None:
        try:
            job = await self.store.get(job_id)
        except NotFound:
            return
        if job.status != JobStatus.QUEUED:
            logger.warning("Job %s is %s, not starting a worker", job_id, job.status.value)
            return

        budget = min(job.options.timeout or self.hard_timeout, self.hard_timeout)
        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            await asyncio.wait_for(self._pipeline(job), timeout=budget)
        except asyncio.TimeoutError:
            logger.warning("Job %s hit the %.0fs cutoff", job_id, budget)
            await self._fail(
                job_id,
                JobTimeout(f"Job exceeded the {budget:g}s time limit", details={"timeout_seconds": budget}),
            )
        except _JobGone:
            logger.debug("Job %s was removed while running; dropping result", job_id)
        except PageStructError as e:
            logger.info("Job %s failed: %s %s", job_id, e.code, e.message)
            await self._fail(job_id, e)
        except asyncio.CancelledError:
            await self._fail(job_id, Internal("Job aborted: service shutting down"))
            raise
        except Exception as e:
            logger.exception("Job %s: unexpected error", job_id)
            await self._fail(job_id, Internal(f"Unexpected error: {str(e)[:300]}"))
        finally:
            elapsed = loop.time() - started
            if elapsed > self.soft_timeout:
                logger.warning("Job %s took %.1fs (soft target %.0fs)", job_id, elapsed, self.soft_timeout)

    async def _pipeline(self, job: Job) -> None:
        job_id = job.job_id

        if await self._cancel_requested(job_id):
            await self._mark_canceled(job_id, "before extraction")
            return
        await self._update(
            job_id,
            status=JobStatus.SCRAPING,
            progress=JobProgress(step="scraping", message="Fetching page content"),
        )
        extraction = await self.extractor.extract(job.url, job.options)
        logger.info(
            "Job %s: extracted %d chars via %s", job_id, len(extraction.content), extraction.method.value
        )

        if await self._cancel_requested(job_id):
            await self._mark_canceled(job_id, "before structuring")
            return
        await self._update(
            job_id,
            status=JobStatus.PARSING,
            method=extraction.method,
            raw_content=extraction.content,
            progress=JobProgress(step="parsing", message="Structuring content"),
        )
        descriptor = await self.schema_client.fetch(job.schema_endpoint)

        if await self._cancel_requested(job_id):
            await self._mark_canceled(job_id, "before model call")
            return
        data = await self.structurer.structure(extraction.content, descriptor)

        await self._update(
            job_id,
            status=JobStatus.COMPLETED,
            structured_data=data,
            completed_at=utcnow(),
            progress=JobProgress(step="completed", message="Structured data ready"),
        )
        logger.info("Job %s completed", job_id)

    async def _update(self, job_id: str, /, **fields: Any) -> Job:
        try:
            return await self.store.update(job_id, **fields)
        except NotFound as e:
            raise _JobGone(job_id) from e

    async def _cancel_requested(self, job_id: str) -> bool:
        try:
            return (await self.store.get(job_id)).cancel_requested
        except NotFound as e:
            raise _JobGone(job_id) from e

    async def _mark_canceled(self, job_id: str, where: str) -> None:
        await self._update(
            job_id,
            status=JobStatus.CANCELED,
            completed_at=utcnow(),
            progress=JobProgress(step="canceled", message=f"Canceled {where}"),
        )
        logger.info("Job %s canceled %s", job_id, where)

    async def _fail(self, job_id: str, error: PageStructError) -> None:
        try:
            await self.store.update(
                job_id,
                status=JobStatus.FAILED,
                error=error.to_error(),
                completed_at=utcnow(),
                progress=JobProgress(step="failed", message=error.message[:200]),
            )
        except NotFound:
            logger.debug("Job %s no longer stored; failure not recorded", job_id)
        except InvalidTransition:
            logger.debug("Job %s already terminal; failure %s not recorded", job_id, error.code)

    def _check_access(self, job: Job, client_id: str | None) -> None:
        if self._authorize is not None and not self._authorize(job, client_id):
            # Indistinguishable from an unknown id
            raise NotFound(f"Job not found: {job.job_id}", details={"job_id": job.job_id})

"""Job storage: in-memory (default) or file-based.

Both stores keep whole-record snapshots: ``update`` validates a complete new
``Job`` and swaps it in under a writer lock, so a concurrent ``get`` sees
either the previous record or the new one, never a half-applied write.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from pydantic import ValidationError

from pagestruct.config import Settings, get_settings
from pagestruct.errors import Internal, InvalidTransition, NotFound
from pagestruct.jobs.models import Job, utcnow

logger = logging.getLogger(__name__)

_IMMUTABLE_FIELDS = frozenset({"job_id", "created_at", "expires_at"})


class JobStore(Protocol):
    async def create(self, job: Job) -> Job: ...
    async def get(self, job_id: str, now: datetime | None = None) -> Job: ...
    async def update(self, job_id: str, /, **fields: Any) -> Job: ...
    async def list_expired(self, now: datetime | None = None) -> list[str]: ...
    async def list_ids(self) -> list[str]: ...
    async def delete(self, job_id: str) -> bool: ...
    async def count(self) -> int: ...


def apply_update(current: Job, fields: dict[str, Any]) -> Job:
    """Return a new validated Job with ``fields`` applied to ``current``.

    Raises InvalidTransition for backward status moves and Internal for
    writes to immutable fields or combinations the model rejects.
    """
    touched = _IMMUTABLE_FIELDS.intersection(fields)
    if touched:
        raise Internal(f"Immutable job fields cannot be updated: {sorted(touched)}")

    new_status = fields.get("status")
    if new_status is not None and not current.can_transition(new_status):
        raise InvalidTransition(
            f"Job {current.job_id}: transition {current.status.value} -> {getattr(new_status, 'value', new_status)} not allowed",
            details={"job_id": current.job_id, "from": current.status.value},
        )

    data = current.model_dump()
    data.update(fields)
    data["updated_at"] = utcnow()
    try:
        return Job.model_validate(data)
    except ValidationError as e:
        raise Internal(f"Job {current.job_id}: invalid update: {e.errors()[0]['msg']}") from e


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------

class MemoryJobStore:
    """Keep jobs in process memory. A restart clears all jobs."""

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}
        self._lock = asyncio.Lock()

    async def create(self, job: Job) -> Job:
        async with self._lock:
            if job.job_id in self._jobs:
                raise Internal(f"Job id already exists: {job.job_id}")
            self._jobs[job.job_id] = job
        return job

    async def get(self, job_id: str, now: datetime | None = None) -> Job:
        job = self._jobs.get(job_id)
        if job is None or job.is_expired(now):
            raise NotFound(f"Job not found: {job_id}", details={"job_id": job_id})
        return job

    async def update(self, job_id: str, /, **fields: Any) -> Job:
        async with self._lock:
            current = self._jobs.get(job_id)
            if current is None:
                raise NotFound(f"Job not found: {job_id}", details={"job_id": job_id})
            updated = apply_update(current, fields)
            self._jobs[job_id] = updated
        return updated

    async def list_expired(self, now: datetime | None = None) -> list[str]:
        now = now or utcnow()
        return [job_id for job_id, job in list(self._jobs.items()) if job.expires_at < now]

    async def list_ids(self) -> list[str]:
        return list(self._jobs)

    async def delete(self, job_id: str) -> bool:
        async with self._lock:
            return self._jobs.pop(job_id, None) is not None

    async def count(self) -> int:
        return len(self._jobs)


# ---------------------------------------------------------------------------
# File-based implementation
# ---------------------------------------------------------------------------

class FileJobStore:
    """Persist jobs as JSON files. Survives restarts within same data dir.

    Writes go to a temp file in the same directory and are moved into place
    with ``os.replace`` so readers never see a truncated record.
    """

    def __init__(self, data_dir: Path):
        self._dir = Path(data_dir)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    def _job_path(self, job_id: str) -> Path:
        # job ids are hex; refuse anything that could escape the directory
        if not job_id or not job_id.isalnum():
            raise NotFound(f"Job not found: {job_id}", details={"job_id": job_id})
        return self._dir / f"{job_id}.json"

    async def create(self, job: Job) -> Job:
        async with self._lock:
            path = self._job_path(job.job_id)
            if path.exists():
                raise Internal(f"Job id already exists: {job.job_id}")
            await asyncio.to_thread(self._write_job, job)
        return job

    async def get(self, job_id: str, now: datetime | None = None) -> Job:
        job = await asyncio.to_thread(self._read_job, self._job_path(job_id))
        if job is None or job.is_expired(now):
            raise NotFound(f"Job not found: {job_id}", details={"job_id": job_id})
        return job

    async def update(self, job_id: str, /, **fields: Any) -> Job:
        async with self._lock:
            current = await asyncio.to_thread(self._read_job, self._job_path(job_id))
            if current is None:
                raise NotFound(f"Job not found: {job_id}", details={"job_id": job_id})
            updated = apply_update(current, fields)
            await asyncio.to_thread(self._write_job, updated)
        return updated

    async def list_expired(self, now: datetime | None = None) -> list[str]:
        now = now or utcnow()
        expired = []
        for path in self._dir.glob("*.json"):
            job = await asyncio.to_thread(self._read_job, path)
            if job is not None and job.expires_at < now:
                expired.append(job.job_id)
        return expired

    async def list_ids(self) -> list[str]:
        return [p.stem for p in self._dir.glob("*.json") if not p.name.startswith(".")]

    async def delete(self, job_id: str) -> bool:
        async with self._lock:
            path = self._job_path(job_id)
            try:
                path.unlink()
            except FileNotFoundError:
                return False
            return True

    async def count(self) -> int:
        return sum(1 for _ in self._dir.glob("*.json"))

    def _write_job(self, job: Job) -> None:
        data = job.model_dump(mode="json")
        fd, tmp = tempfile.mkstemp(dir=self._dir, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(tmp, self._job_path(job.job_id))
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def _read_job(self, path: Path) -> Job | None:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Unreadable job file %s: %s", path.name, e)
            return None
        return Job.model_validate(data)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def get_job_store(settings: Settings | None = None) -> JobStore:
    """Build the configured job store (file-based or in-memory)."""
    settings = settings or get_settings()
    backend = settings.pagestruct_job_store.lower()
    if backend == "file":
        logger.info("Using file-based job store (%s)", settings.jobs_dir)
        return FileJobStore(settings.jobs_dir)
    if backend != "memory":
        logger.warning("Unknown job store '%s', defaulting to memory", backend)
    logger.info("Using in-memory job store")
    return MemoryJobStore()


def new_job_id() -> str:
    """128-bit random identifier, hex encoded."""
    return uuid.uuid4().hex

"""Parse job records and their storage."""

from pagestruct.jobs.models import (
    ExtractionMethod,
    Job,
    JobError,
    JobOptions,
    JobProgress,
    JobStatus,
)
from pagestruct.jobs.store import FileJobStore, JobStore, MemoryJobStore, get_job_store, new_job_id

__all__ = [
    "ExtractionMethod",
    "FileJobStore",
    "Job",
    "JobError",
    "JobOptions",
    "JobProgress",
    "JobStatus",
    "JobStore",
    "MemoryJobStore",
    "get_job_store",
    "new_job_id",
]

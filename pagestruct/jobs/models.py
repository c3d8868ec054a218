"""Parse job schema, status and state machine."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    QUEUED = "queued"
    SCRAPING = "scraping"
    PARSING = "parsing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELED})

# Position along the pipeline; terminal states share the last rank.
STATUS_RANK: dict[JobStatus, int] = {
    JobStatus.QUEUED: 0,
    JobStatus.SCRAPING: 1,
    JobStatus.PARSING: 2,
    JobStatus.COMPLETED: 3,
    JobStatus.FAILED: 3,
    JobStatus.CANCELED: 3,
}

ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.SCRAPING, JobStatus.FAILED, JobStatus.CANCELED}),
    JobStatus.SCRAPING: frozenset({JobStatus.PARSING, JobStatus.FAILED, JobStatus.CANCELED}),
    JobStatus.PARSING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELED: frozenset(),
}


class ExtractionMethod(str, Enum):
    UNSET = "unset"
    DOM = "dom"
    HEADLESS = "headless"


class JobOptions(BaseModel):
    """Per-job knobs supplied by the client."""

    timeout: float | None = Field(default=None, gt=0)  # seconds; capped by hard_timeout_seconds
    force_headless: bool = False


class JobProgress(BaseModel):
    step: str = "queued"
    message: str = "Waiting to start"


class JobError(BaseModel):
    code: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class Job(BaseModel):
    """URL-to-structured-data job, persisted for async polling."""

    job_id: str
    client_id: str = ""
    url: str
    schema_endpoint: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    options: JobOptions = Field(default_factory=JobOptions)
    status: JobStatus = JobStatus.QUEUED
    progress: JobProgress = Field(default_factory=JobProgress)
    method: ExtractionMethod = ExtractionMethod.UNSET
    raw_content: str | None = None
    structured_data: dict[str, Any] | None = None
    error: JobError | None = None
    cancel_requested: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None

    @model_validator(mode="after")
    def _check_result_fields(self) -> "Job":
        # structured_data iff completed, error iff failed
        if (self.status == JobStatus.COMPLETED) != bool(self.structured_data):
            raise ValueError("structured_data must be set exactly when status is completed")
        if (self.status == JobStatus.FAILED) != (self.error is not None):
            raise ValueError("error must be set exactly when status is failed")
        return self

    @classmethod
    def new(
        cls,
        job_id: str,
        url: str,
        schema_endpoint: str,
        ttl: timedelta,
        client_id: str = "",
        metadata: dict[str, Any] | None = None,
        options: JobOptions | None = None,
        now: datetime | None = None,
    ) -> "Job":
        created = now or utcnow()
        return cls(
            job_id=job_id,
            client_id=client_id,
            url=url,
            schema_endpoint=schema_endpoint,
            metadata=metadata or {},
            options=options or JobOptions(),
            created_at=created,
            updated_at=created,
            expires_at=created + ttl,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) > self.expires_at

    def can_transition(self, to: JobStatus) -> bool:
        return to == self.status or to in ALLOWED_TRANSITIONS[self.status]

"""Pydantic models for the /parse endpoints.

Request body, the submit acknowledgement, the three poll response shapes
(processing, completed, failed/canceled) and the shared error envelope.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from pagestruct.jobs.models import Job, JobOptions, JobStatus

# Status reported in the submit acknowledgement, whatever the internal state
PROCESSING = "processing"


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------

class ParseOptions(BaseModel):
    timeout: float | None = Field(default=None, gt=0, description="Per-job time limit in seconds")
    force_headless: bool = False

    def to_job_options(self) -> JobOptions:
        return JobOptions(timeout=self.timeout, force_headless=self.force_headless)


class ParseRequest(BaseModel):
    """Body for POST /parse."""

    url: str
    schema_endpoint: str
    client_id: str = ""
    metadata: dict[str, Any] | None = None
    options: ParseOptions | None = None


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class ParseAccepted(BaseModel):
    success: bool = True
    job_id: str
    status: str = PROCESSING
    estimated_completion: datetime


class ProgressOut(BaseModel):
    step: str
    message: str


class ErrorBody(BaseModel):
    code: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    success: bool = False
    error: ErrorBody


class ResultOut(BaseModel):
    structured_data: dict[str, Any]
    raw_content: str
    method: str
    processed_at: datetime | None = None


class JobProcessing(BaseModel):
    job_id: str
    status: str
    progress: ProgressOut


class JobCompleted(BaseModel):
    job_id: str
    status: str = JobStatus.COMPLETED.value
    result: ResultOut
    metadata: dict[str, Any] = Field(default_factory=dict)


class JobEnded(BaseModel):
    """Failed or canceled job: normal response with the error populated when failed."""

    job_id: str
    status: str
    progress: ProgressOut
    error: ErrorBody | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


def job_to_response(job: Job) -> JobProcessing | JobCompleted | JobEnded:
    """Pick the poll response shape matching the job's status."""
    progress = ProgressOut(step=job.progress.step, message=job.progress.message)
    if job.status == JobStatus.COMPLETED:
        return JobCompleted(
            job_id=job.job_id,
            result=ResultOut(
                structured_data=job.structured_data or {},
                raw_content=job.raw_content or "",
                method=job.method.value,
                processed_at=job.completed_at,
            ),
            metadata=job.metadata,
        )
    if job.status in (JobStatus.FAILED, JobStatus.CANCELED):
        error = None
        if job.error is not None:
            error = ErrorBody(code=job.error.code, message=job.error.message, details=job.error.details)
        return JobEnded(
            job_id=job.job_id,
            status=job.status.value,
            progress=progress,
            error=error,
            metadata=job.metadata,
        )
    return JobProcessing(job_id=job.job_id, status=job.status.value, progress=progress)

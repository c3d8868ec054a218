"""Pydantic models for the HTTP surface."""

from pagestruct.schemas.api import (
    ErrorBody,
    ErrorResponse,
    JobCompleted,
    JobEnded,
    JobProcessing,
    ParseAccepted,
    ParseOptions,
    ParseRequest,
    job_to_response,
)

__all__ = [
    "ErrorBody",
    "ErrorResponse",
    "JobCompleted",
    "JobEnded",
    "JobProcessing",
    "ParseAccepted",
    "ParseOptions",
    "ParseRequest",
    "job_to_response",
]

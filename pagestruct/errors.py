"""Error taxonomy shared by the pipeline, the job store and the HTTP layer.

Every error carries a stable ``code`` (the value clients see in
``error.code``), a human-readable ``message`` and an optional ``details``
mapping with diagnostics (HTTP status, timeout flag, last model output ...).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pagestruct.jobs.models import JobError


class PageStructError(Exception):
    """Base class for all pipeline errors."""

    code = "INTERNAL"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_error(self) -> "JobError":
        from pagestruct.jobs.models import JobError

        return JobError(code=self.code, message=self.message, details=self.details)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class InvalidInput(PageStructError):
    code = "INVALID_INPUT"


class ScrapeFailed(PageStructError):
    code = "SCRAPE_FAILED"


class ResourceExhausted(ScrapeFailed):
    """No headless session became free within the acquisition timeout.

    Reported as SCRAPE_FAILED with ``details.resource_exhausted``.
    """


class SchemaFetchFailed(PageStructError):
    code = "SCHEMA_FETCH_FAILED"


class LLMFailure(PageStructError):
    code = "LLM_FAILURE"


class SchemaValidationFailed(PageStructError):
    code = "SCHEMA_VALIDATION_FAILED"


class NotFound(PageStructError):
    code = "NOT_FOUND"


class JobTimeout(PageStructError):
    code = "TIMEOUT"


class Internal(PageStructError):
    code = "INTERNAL"


class InvalidTransition(Internal):
    """A write tried to move a job backwards in the state machine."""

"""Parse API routes: async extraction with job polling.

POST /parse
  → Validates the URL, creates a job, returns { job_id, status } immediately.
  → A background worker scrapes and structures the page.

GET /parse/{job_id}
  → Returns status and progress, or the result once completed.

DELETE /parse/{job_id}
  → Requests cancellation at the next stage boundary.
"""

import logging

from fastapi import APIRouter, Header, Request, status

from pagestruct.orchestrator import JobOrchestrator
from pagestruct.schemas.api import (
    ErrorResponse,
    ParseAccepted,
    ParseRequest,
    job_to_response,
)

logger = logging.getLogger(__name__)
router = APIRouter()

# Poll responses come in three shapes (processing, completed, failed/canceled),
# so they are returned as-is rather than coerced through one response model.
_POLL_RESPONSES = {404: {"model": ErrorResponse, "description": "Unknown or expired job"}}


def _orchestrator(request: Request) -> JobOrchestrator:
    return request.app.state.service.orchestrator


@router.post(
    "/parse",
    response_model=ParseAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    responses={400: {"model": ErrorResponse, "description": "Invalid input"}},
    summary="Submit a URL for extraction and structuring (async)",
    description=(
        "Creates a job and returns immediately. Poll GET /parse/{job_id} for status "
        "and the structured result. Each submission creates an independent job."
    ),
)
async def submit_parse(body: ParseRequest, request: Request):
    orchestrator = _orchestrator(request)
    options = body.options.to_job_options() if body.options else None
    job = await orchestrator.submit(
        url=body.url,
        schema_endpoint=body.schema_endpoint,
        client_id=body.client_id,
        metadata=body.metadata,
        options=options,
    )
    return ParseAccepted(job_id=job.job_id, estimated_completion=orchestrator.estimated_completion(job))


@router.get(
    "/parse/{job_id}",
    response_model=None,
    responses=_POLL_RESPONSES,
    summary="Get parse job status",
    description="Poll for job status. Returns the structured result when status is completed.",
)
async def get_parse_job(job_id: str, request: Request, x_client_id: str | None = Header(default=None)):
    job = await _orchestrator(request).get_status(job_id, client_id=x_client_id)
    return job_to_response(job)


@router.delete(
    "/parse/{job_id}",
    response_model=None,
    responses=_POLL_RESPONSES,
    summary="Cancel a parse job",
    description="Best-effort: takes effect before the next stage starts. No-op for finished jobs.",
)
async def cancel_parse_job(job_id: str, request: Request, x_client_id: str | None = Header(default=None)):
    job = await _orchestrator(request).cancel(job_id, client_id=x_client_id)
    return job_to_response(job)

"""FastAPI backend for pagestruct: URL to structured JSON, asynchronously."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from backend.routes import parse
from pagestruct.config import Settings, get_settings
from pagestruct.errors import PageStructError
from pagestruct.schemas.api import ErrorBody, ErrorResponse
from pagestruct.service import Service, build_service

logger = logging.getLogger(__name__)

_STATUS_BY_CODE = {
    "INVALID_INPUT": 400,
    "NOT_FOUND": 404,
}


def error_response(status_code: int, code: str, message: str, details: dict | None = None) -> JSONResponse:
    body = ErrorResponse(error=ErrorBody(code=code, message=message, details=details or {}))
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


def create_app(settings: Settings | None = None, service: Service | None = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level.upper())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        svc = service or build_service(settings)
        app.state.service = svc
        await svc.start()
        logger.info(
            "pagestruct ready (store=%s, headless=%s x%d, ttl=%ss)",
            settings.pagestruct_job_store,
            "on" if settings.headless_enabled else "off",
            settings.headless_max_sessions,
            settings.job_ttl_seconds,
        )

        yield  # application runs

        await svc.close()

    app = FastAPI(
        title="pagestruct API",
        description="Extract page content and structure it into JSON against a client-supplied schema.",
        version="0.1.0",
        lifespan=lifespan,
    )

    # -----------------------------------------------------------------------
    # Error envelope: every failure is {success: false, error: {code, message, details}}
    # -----------------------------------------------------------------------
    @app.exception_handler(PageStructError)
    async def pagestruct_error_handler(request: Request, exc: PageStructError):
        status_code = _STATUS_BY_CODE.get(exc.code, 500)
        if status_code == 500:
            logger.error("Request %s %s failed: %r", request.method, request.url.path, exc)
        return error_response(status_code, exc.code, exc.message, exc.details)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"field": ".".join(str(p) for p in err.get("loc", ())[1:]), "message": err.get("msg", "")}
            for err in exc.errors()
        ]
        return error_response(400, "INVALID_INPUT", "Invalid request body", {"errors": errors})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return error_response(500, "INTERNAL", "Internal server error")

    # -----------------------------------------------------------------------
    # CORS
    # -----------------------------------------------------------------------
    cors_kw: dict = {
        "allow_origins": settings.cors_origin_list,
        "allow_credentials": True,
        "allow_methods": ["*"],
        "allow_headers": ["*"],
    }
    if settings.cors_origin_regex:
        cors_kw["allow_origin_regex"] = settings.cors_origin_regex
    app.add_middleware(CORSMiddleware, **cors_kw)

    # -----------------------------------------------------------------------
    # Health
    # -----------------------------------------------------------------------
    class HealthResponse(BaseModel):
        status: str
        jobs: int
        active_workers: int
        headless: dict[str, int]

    @app.get("/health", response_model=HealthResponse)
    async def health(request: Request):
        """Liveness/readiness probe."""
        svc: Service = request.app.state.service
        return HealthResponse(
            status="ok",
            jobs=await svc.orchestrator.store.count(),
            active_workers=svc.orchestrator.active_workers,
            headless=svc.pool.snapshot(),
        )

    app.include_router(parse.router, tags=["parse"])
    return app


app = create_app()

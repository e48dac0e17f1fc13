"""
FastAPI Application — Entry Point

Document Intelligence API

Architecture:
  - All routes are versioned under /api/v1/
  - The tenant id arrives in the X-Tenant-ID header from the trusted gateway
  - AIServices (provider, stores, pipeline, scheduler) is built once in the
    lifespan and shared through app.state
  - Structured JSON error responses on all 4xx/5xx

Domain error → HTTP status:
  ValidationError                 400
  DocumentNotFoundError           404
  InvalidTransitionError          409
  ProviderError(auth)             502
  ProviderError(quota)            402
  ProviderError(rate-limit)       429
  ProviderError(payload-too-large) 413
  ProviderError(unavailable)      503
  ProviderError(malformed reply)  502   unavailable, retryable=False
  DimensionMismatchError          500
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from docintel.api.v1.ai import router as ai_router
from docintel.core.config import Settings, get_settings
from docintel.core.errors import (
    DimensionMismatchError,
    DocIntelError,
    DocumentNotFoundError,
    InvalidTransitionError,
    ProviderError,
    ProviderErrorKind,
    ValidationError,
)
from docintel.schemas.ai import ErrorDetail, ErrorResponse
from docintel.services.container import AIServices

logger = logging.getLogger(__name__)

_PROVIDER_STATUS: dict[ProviderErrorKind, int] = {
    ProviderErrorKind.AUTH:              status.HTTP_502_BAD_GATEWAY,
    ProviderErrorKind.QUOTA:             status.HTTP_402_PAYMENT_REQUIRED,
    ProviderErrorKind.RATE_LIMIT:        status.HTTP_429_TOO_MANY_REQUESTS,
    ProviderErrorKind.PAYLOAD_TOO_LARGE: status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
    ProviderErrorKind.UNAVAILABLE:       status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_for(exc: DocIntelError) -> int:
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, DocumentNotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, InvalidTransitionError):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, ProviderError):
        if exc.kind is ProviderErrorKind.UNAVAILABLE and not exc.retryable:
            # The backend answered, but with a malformed response
            return status.HTTP_502_BAD_GATEWAY
        return _PROVIDER_STATUS.get(exc.kind, status.HTTP_503_SERVICE_UNAVAILABLE)
    if isinstance(exc, DimensionMismatchError):
        return status.HTTP_500_INTERNAL_SERVER_ERROR
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def request_id_of(request: Request) -> str:
    return getattr(request.state, "request_id", None) or request.headers.get(
        "X-Request-ID", str(uuid.uuid4())
    )


def error_response(
    request:     Request,
    status_code: int,
    error_code:  str,
    message:     str,
    details:     list[ErrorDetail] | None = None,
) -> JSONResponse:
    request_id = request_id_of(request)
    body = ErrorResponse(
        error_code=error_code,
        message=message,
        details=details or [],
        request_id=request_id,
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json"),
        headers={"X-Request-ID": request_id},
    )


# ---------------------------------------------------------------------------
# Application lifespan: startup / shutdown hooks
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: build AIServices (one provider, one store, one scheduler) unless
    a test already placed one on app.state, re-schedule the backlog and
    (local scheduler) start the periodic backlog sweep.
    Shutdown: drain the scheduler and close clients and connection pools.
    """
    settings: Settings = app.state.settings
    services: AIServices | None = getattr(app.state, "services", None)
    owns_services = services is None

    if owns_services:
        services = await AIServices.build(settings, create_schema=settings.db_create_tables)
        app.state.services = services

    logger.info(
        "Starting Document Intelligence API | env=%s provider=%s dims=%d scheduler=%s",
        settings.app_env, services.gateway.provider_name,
        services.gateway.embedding_dimensions, settings.pipeline_scheduler,
    )

    if settings.pipeline_scheduler == "local":
        resumed = await services.pipeline.schedule_pending(settings.pipeline_backlog_limit)
        if resumed:
            logger.info("Backlog | re-scheduled %d pending documents", resumed)
        services.start_backlog_sweep()

    yield

    logger.info("Shutting down Document Intelligence API")
    if owns_services:
        await services.aclose()


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(settings: Settings | None = None, services: AIServices | None = None) -> FastAPI:
    settings = settings or get_settings()

    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    app = FastAPI(
        title="Document Intelligence API",
        description=(
            "Tenant-isolated question answering over uploaded documents, plus "
            "automatic extraction, classification, summarization and embedding."
        ),
        version="1.0.0",
        docs_url="/api/docs" if not settings.is_production else None,
        redoc_url="/api/redoc" if not settings.is_production else None,
        openapi_url="/api/openapi.json" if not settings.is_production else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    if services is not None:
        app.state.services = services

    # ----------------------------------------------------------------
    # Middleware (applied in reverse order: last added = outermost)
    # ----------------------------------------------------------------

    app.add_middleware(GZipMiddleware, minimum_size=1024)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.app_env == "development" else [],
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID", "X-Tenant-ID"],
        expose_headers=["X-Request-ID"],
    )

    # ----------------------------------------------------------------
    # Request ID + structured logging middleware
    # ----------------------------------------------------------------

    @app.middleware("http")
    async def request_id_and_logging(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        start = time.perf_counter()

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request_id

        logger.info(
            "HTTP %s %s %d %.1fms | tenant=%s",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            request.headers.get("X-Tenant-ID", "-"),
        )
        return response

    # ----------------------------------------------------------------
    # Exception handlers: every 4xx/5xx renders an ErrorResponse
    # ----------------------------------------------------------------

    @app.exception_handler(DocIntelError)
    async def domain_exception_handler(request: Request, exc: DocIntelError):
        """Map the domain error taxonomy to HTTP statuses."""
        status_code = status_for(exc)
        details: list[ErrorDetail] = []
        if isinstance(exc, ProviderError):
            details.append(ErrorDetail(field=None, message=exc.kind.value, code="PROVIDER_ERROR_KIND"))

        if status_code >= 500:
            logger.error(
                "Request failed | path=%s request_id=%s error=%r",
                request.url.path, request_id_of(request), exc,
            )
        else:
            logger.info(
                "Request rejected | path=%s status=%d error_code=%s",
                request.url.path, status_code, exc.error_code,
            )
        return error_response(request, status_code, exc.error_code, str(exc), details)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        details = [
            ErrorDetail(
                field=".".join(str(loc) for loc in err["loc"]),
                message=err["msg"],
                code="VALIDATION_ERROR",
            )
            for err in exc.errors()
        ]
        return error_response(
            request,
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "VALIDATION_ERROR",
            "Request body or parameters are invalid.",
            details,
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Unhandled errors answer 500 without internals."""
        logger.exception(
            "Unhandled exception | path=%s request_id=%s",
            request.url.path, request_id_of(request),
        )
        return error_response(
            request,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "INTERNAL_ERROR",
            "An unexpected error occurred.",
        )

    # ----------------------------------------------------------------
    # Routers
    # ----------------------------------------------------------------

    app.include_router(ai_router, prefix="/api/v1")

    @app.get(
        "/health",
        tags=["Operations"],
        summary="Liveness check",
        description="Returns 200 if the process is alive. No external checks.",
    )
    async def health() -> dict:
        return {"status": "ok", "service": "docintel-api"}

    return app


# ---------------------------------------------------------------------------
# Local development entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(
        "docintel.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        reload=_settings.app_env == "development",
        log_level="debug" if _settings.debug else "info",
        access_log=True,
    )

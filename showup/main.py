"""Showup backend: FastAPI application entry point."""

import uuid
from contextlib import asynccontextmanager

# configure_structlog must run before other showup imports grab a logger
from showup.core.logging import configure_structlog
from showup.core.config import get_settings as _get_settings_early

_early_settings = _get_settings_early()
configure_structlog(
    log_level="DEBUG" if _early_settings.debug else "INFO",
    json_logs=not _early_settings.debug,
)

import structlog

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from showup.api.routes import api_router
from showup.core.config import get_settings
from showup.core.exceptions import ExternalServiceError, InternalError, ShowupError
from showup.db import close_db, init_db
from showup.middleware.correlation import get_correlation_id, setup_correlation_middleware

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    settings = get_settings()
    logger.info("startup_begin", app_name=settings.app_name, environment=settings.environment)

    await init_db()
    logger.info("db_initialized")

    if settings.is_production and settings.stripe_webhook_insecure:
        raise RuntimeError("STRIPE_WEBHOOK_INSECURE must not be enabled in production")

    yield

    logger.info("shutdown_begin")
    await close_db()
    logger.info("shutdown_complete")


def _error_response(request: Request, status_code: int, detail: str, event: str, **log_fields) -> JSONResponse:
    debug_id = str(uuid.uuid4())
    log = logger.error if status_code >= 500 else logger.warning
    log(
        event,
        status_code=status_code,
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        user_id=getattr(request.state, "user_id", None),
        detail=detail,
        **log_fields,
    )
    return JSONResponse(status_code=status_code, content={"detail": detail, "debug_id": debug_id})


async def showup_exception_handler(request: Request, exc: ShowupError) -> JSONResponse:
    """Map domain errors to their status code with a single-message body.

    External and internal failures log their private detail server-side only.
    """
    extra = {}
    if isinstance(exc, ExternalServiceError):
        extra = {"service": exc.service, "error": exc.detail}
    elif isinstance(exc, InternalError):
        extra = {"error": exc.detail}
    return _error_response(request, exc.status_code, exc.message, "showup_error", error_type=type(exc).__name__, **extra)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return _error_response(request, exc.status_code, str(exc.detail), "http_exception")


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Reject malformed bodies with 400 and a message naming the first bad field."""
    errors = exc.errors()
    if errors:
        first = errors[0]
        loc = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
        field = ".".join(loc) or "body"
        detail = f"{field}: {first.get('msg', 'invalid value')}"
    else:
        detail = "Invalid request"
    return _error_response(request, 400, detail, "request_validation_failed")


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log unhandled errors with traceback, return a generic 500."""
    debug_id = str(uuid.uuid4())
    logger.error(
        "unhandled_exception",
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        user_id=getattr(request.state, "user_id", None),
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "debug_id": debug_id},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.exception_handler(ShowupError)(showup_exception_handler)
    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(RequestValidationError)(validation_exception_handler)
    app.exception_handler(Exception)(generic_exception_handler)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Accountability challenges backed by a refundable deposit",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list({settings.frontend_url, *settings.cors_origins}),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Correlation ID middleware (runs first on incoming requests)
    setup_correlation_middleware(app)

    register_exception_handlers(app)

    app.include_router(api_router, prefix="/api")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "showup.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )

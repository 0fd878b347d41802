"""
Main FastAPI application.

Payment service API with:
- CORS configuration
- Error handling
- Request ID tracking
- Structured logging
- Prometheus metrics
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from payment_service.config import get_settings
from payment_service.core.exceptions import (
    IdentityNotFoundError,
    InvalidArgumentError,
    PaymentError,
    StorageError,
    UpstreamUnavailableError,
)
from payment_service.database.connection import close_db, init_db
from payment_service.monitoring.logging import setup_logging

from .dependencies import get_payment_processor
from .routes import monitoring_router, payment_router

setup_logging()
logger = structlog.get_logger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
    """
    Application lifespan manager.

    Creates tables on startup; on shutdown flushes pending payment events and
    closes upstream clients and database connections.
    """
    logger.info("application_startup", app_name=settings.app_name, env=settings.app_env)

    try:
        await init_db()
        logger.info("database_initialized")
    except Exception as e:
        logger.error("database_initialization_failed", error=str(e))
        raise

    yield

    logger.info("application_shutdown")
    processor = get_payment_processor()
    processor.event_producer.close()
    await processor.outcome_client.aclose()
    await processor.order_client.aclose()
    await processor.user_client.aclose()

    try:
        await close_db()
        logger.info("database_connections_closed")
    except Exception as e:
        logger.error("database_shutdown_error", error=str(e))


app = FastAPI(
    title="Payment Service",
    description=(
        "Creates payments, resolves their outcome through an external API, "
        "notifies the order service and answers payment queries and totals."
    ),
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_id_middleware(request: Request, call_next: Any) -> Response:
    """Bind a request id to the log context and time the request."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    start_time = time.time()

    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )

    logger.info(
        "request_started",
        client_host=request.client.host if request.client else None,
    )

    try:
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        logger.info(
            "request_completed",
            status_code=response.status_code,
            duration_seconds=time.time() - start_time,
        )
        return response

    except Exception as e:
        logger.error(
            "request_failed",
            error=str(e),
            duration_seconds=time.time() - start_time,
        )
        raise

    finally:
        structlog.contextvars.clear_contextvars()


def _error(status_code: int, error: str, message: str, **extra: Any) -> JSONResponse:
    content: Dict[str, Any] = {"error": error, "message": message}
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Map request validation failures to 400 with a per-field error map."""
    errors: Dict[str, str] = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ())]
        field = ".".join(loc[1:]) if len(loc) > 1 else ".".join(loc) or "request"
        errors.setdefault(field, err.get("msg", "invalid value"))

    logger.warning("request_validation_failed", errors=errors)
    return _error(
        status.HTTP_400_BAD_REQUEST, "Validation Failed", "Request validation failed", errors=errors
    )


@app.exception_handler(InvalidArgumentError)
async def invalid_argument_handler(request: Request, exc: InvalidArgumentError) -> JSONResponse:
    logger.warning("invalid_argument", error=str(exc))
    return _error(status.HTTP_400_BAD_REQUEST, "Bad Request", str(exc))


@app.exception_handler(IdentityNotFoundError)
async def identity_not_found_handler(
    request: Request, exc: IdentityNotFoundError
) -> JSONResponse:
    logger.warning("identity_not_found", email=exc.email)
    return _error(status.HTTP_404_NOT_FOUND, "Not Found", str(exc))


@app.exception_handler(UpstreamUnavailableError)
async def upstream_unavailable_handler(
    request: Request, exc: UpstreamUnavailableError
) -> JSONResponse:
    logger.error("upstream_unavailable", error=str(exc), error_type=type(exc).__name__)
    return _error(status.HTTP_502_BAD_GATEWAY, "Bad Gateway", str(exc))


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    logger.error("storage_error", error=str(exc))
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Database Error", str(exc))


@app.exception_handler(PaymentError)
async def payment_error_handler(request: Request, exc: PaymentError) -> JSONResponse:
    logger.error("payment_error", error=str(exc), error_type=type(exc).__name__)
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Payment Error", str(exc))


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled exceptions.
    """
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
    )
    return _error(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal server error",
        "An unexpected error occurred. Please try again later.",
    )


app.include_router(payment_router)
app.include_router(monitoring_router)


@app.get("/", tags=["root"])
async def root() -> dict[str, Any]:
    """Root endpoint with API information."""
    return {
        "service": settings.app_name,
        "version": "1.0.0",
        "status": "operational",
        "environment": settings.app_env,
        "docs": "/docs",
        "health": "/health",
        "metrics": "/metrics",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "payment_service.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        workers=settings.api_workers if not settings.debug else 1,
        log_level=settings.log_level.lower(),
    )

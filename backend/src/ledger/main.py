"""FastAPI application entry point."""
import traceback
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from sqlalchemy.exc import SQLAlchemyError

from ledger.api.v1 import credits, health, orders, reconciliation
from ledger.config import settings
from ledger.exceptions import (
    DuplicatePool,
    IdempotencyConflict,
    InconsistentLedger,
    InvalidOrder,
    InvalidTransition,
    LedgerError,
    NoCreditsAvailable,
    OrderNotFound,
    PermissionDenied,
    PoolNotFound,
    TransientStoreError,
)
from ledger.middleware.logging import LoggingMiddleware, setup_logging
from ledger.middleware.metrics import MetricsMiddleware
from ledger.schemas.error import REMEDIATION_HINTS, ErrorCode, ErrorDetail, ErrorResponse

setup_logging()
logger = structlog.get_logger(__name__)

LEDGER_ERROR_STATUS = {
    OrderNotFound: status.HTTP_404_NOT_FOUND,
    PoolNotFound: status.HTTP_404_NOT_FOUND,
    InvalidTransition: status.HTTP_409_CONFLICT,
    DuplicatePool: status.HTTP_409_CONFLICT,
    IdempotencyConflict: status.HTTP_409_CONFLICT,
    PermissionDenied: status.HTTP_403_FORBIDDEN,
    NoCreditsAvailable: status.HTTP_402_PAYMENT_REQUIRED,
    InvalidOrder: status.HTTP_422_UNPROCESSABLE_ENTITY,
    InconsistentLedger: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or request.headers.get(
        "x-request-id", f"req_{uuid.uuid4().hex[:12]}"
    )


def _error_body(**fields: Any) -> dict[str, Any]:
    """Serialize an error body through the public ``ErrorResponse`` schema."""
    return ErrorResponse(**fields).model_dump(mode="json")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events."""
    logger.info("application_starting", env=settings.app_env)
    yield
    logger.info("application_shutting_down")


app = FastAPI(
    title="Credit Ledger",
    description="Order approval chain and FIFO credit ledger",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(MetricsMiddleware)
# Added last so it wraps everything and binds the request ID first
app.add_middleware(LoggingMiddleware)

metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)


@app.exception_handler(LedgerError)
async def ledger_exception_handler(request: Request, exc: LedgerError) -> JSONResponse:
    """
    Handle business-rule failures.

    Each error type maps to one status code; the body carries the error's
    machine-readable code and a remediation hint.
    """
    status_code = next(
        (code for error_type, code in LEDGER_ERROR_STATUS.items() if isinstance(exc, error_type)),
        status.HTTP_400_BAD_REQUEST,
    )
    request_id = _request_id(request)

    log = logger.error if status_code >= 500 else logger.info
    log(
        "ledger_error",
        path=request.url.path,
        method=request.method,
        request_id=request_id,
        error_code=exc.code,
        error_message=exc.message,
        status_code=status_code,
    )

    return JSONResponse(
        status_code=status_code,
        content=_error_body(
            error=type(exc).__name__,
            message=exc.message,
            details=[ErrorDetail(code=exc.code, message=exc.message)],
            remediation=exc.remediation,
            request_id=request_id,
        ),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Handle Pydantic validation errors with structured response.

    Returns 422 with detailed field-level validation errors.
    """
    request_id = _request_id(request)

    details = [
        ErrorDetail(
            code=ErrorCode.VALIDATION_ERROR,
            message=error["msg"],
            field=".".join(str(loc) for loc in error["loc"]),
            value=error.get("input"),
        )
        for error in exc.errors()
    ]

    logger.warning(
        "validation_error",
        path=request.url.path,
        method=request.method,
        request_id=request_id,
        error_count=len(details),
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_error_body(
            error="ValidationError",
            message="Request validation failed",
            details=details,
            remediation="Check the API documentation for correct request format at /docs",
            request_id=request_id,
        ),
    )


def _store_unavailable(request: Request, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=_error_body(
            error="StoreUnavailable",
            message="The ledger store did not answer",
            details=[{"code": code, "message": message}],
            remediation=REMEDIATION_HINTS.get(code),
            request_id=_request_id(request),
        ),
        headers={"Retry-After": "30"},
    )


@app.exception_handler(TransientStoreError)
async def transient_store_exception_handler(request: Request, exc: TransientStoreError) -> JSONResponse:
    """
    Handle store faults whose outcome is unknown.

    Returns 503; callers must re-read state before retrying.
    """
    logger.error(
        "transient_store_error",
        path=request.url.path,
        method=request.method,
        operation=exc.operation,
        error_type=type(exc.original).__name__,
    )
    message = "Store temporarily unavailable" if settings.app_env == "production" else str(exc)
    return _store_unavailable(request, ErrorCode.TRANSIENT_STORE_ERROR, message)


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """
    Handle database errors not raised through a ledger service.

    Returns 503 Service Unavailable.
    """
    logger.error(
        "database_error",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
        error_message=str(exc),
    )
    # Don't expose internal database details in production
    message = "Database temporarily unavailable" if settings.app_env == "production" else str(exc)
    return _store_unavailable(request, ErrorCode.DATABASE_ERROR, message)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle all other uncaught exceptions.

    Logs the full stack trace but returns a safe error message to the client.
    """
    request_id = _request_id(request)

    logger.exception(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        request_id=request_id,
        exception_type=type(exc).__name__,
        exception_message=str(exc),
        stack_trace=traceback.format_exc(),
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body(
            error="InternalServerError",
            message="An unexpected error occurred",
            details=[
                {
                    "code": ErrorCode.INTERNAL_ERROR,
                    "message": str(exc) if settings.debug else "Internal server error",
                }
            ],
            remediation="Please contact support with the request ID",
            request_id=request_id,
        ),
    )


@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """Root endpoint with API information."""
    return {
        "service": "Credit Ledger",
        "version": "0.1.0",
        "status": "operational",
        "docs": "/docs",
    }


app.include_router(health.router, tags=["Health"])
# Documented error bodies for every ledger endpoint
ERROR_RESPONSES = {
    code: {"model": ErrorResponse} for code in sorted(set(LEDGER_ERROR_STATUS.values()) | {400, 401, 422, 503})
}
app.include_router(orders.router, prefix="/v1", tags=["Orders"], responses=ERROR_RESPONSES)
app.include_router(credits.router, prefix="/v1", tags=["Credits"], responses=ERROR_RESPONSES)
app.include_router(reconciliation.router, prefix="/v1", tags=["Reconciliation"], responses=ERROR_RESPONSES)

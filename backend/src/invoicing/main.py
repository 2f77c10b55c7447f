"""FastAPI application entry point."""
import traceback
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncGenerator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from sqlalchemy.exc import SQLAlchemyError

from invoicing.api.v1 import health, invoices, payments, recurring_invoices
from invoicing.api.webhooks import stripe as stripe_webhooks
from invoicing.config import settings
from invoicing.exceptions import InvoicingError, NotFoundError, ProviderError, ValidationError
from invoicing.middleware.logging import LoggingMiddleware, setup_logging
from invoicing.middleware.metrics import MetricsMiddleware
from invoicing.schemas.error import REMEDIATION_HINTS, ErrorCode, ErrorDetail

setup_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events."""
    logger.info("application_starting", env=settings.app_env)
    yield
    logger.info("application_shutting_down")


app = FastAPI(
    title="Invoicing and Payment Reconciliation API",
    description="Invoices, recurring billing and Stripe payment reconciliation",
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
app.add_middleware(LoggingMiddleware)

app.mount("/metrics", make_asgi_app())


def _request_id(request: Request) -> str:
    return request.headers.get("x-request-id", f"req_{uuid.uuid4().hex[:12]}")


def _error_response(
    request: Request,
    status_code: int,
    error: str,
    message: str,
    details: list[dict[str, Any]],
    remediation: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(
            {
                "error": error,
                "message": message,
                "details": details,
                "remediation": remediation,
                "request_id": _request_id(request),
                "timestamp": datetime.utcnow().isoformat() + "Z",
            }
        ),
        headers=headers,
    )


def _domain_details(exc: InvoicingError) -> list[dict[str, Any]]:
    return [ErrorDetail(code=exc.code, message=exc.message, field=exc.field).model_dump()]


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Handle request body and query validation errors.

    Returns 422 with field-level details.
    """
    details = [
        ErrorDetail(
            code=ErrorCode.MISSING_REQUIRED_FIELD if error["type"] == "missing" else ErrorCode.VALIDATION_ERROR,
            message=error["msg"],
            field=".".join(str(loc) for loc in error["loc"]),
            value=error.get("input"),
        ).model_dump()
        for error in exc.errors()
    ]
    logger.warning("request_validation_error", path=request.url.path, method=request.method, error_count=len(details))
    return _error_response(
        request,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "ValidationError",
        "Request validation failed",
        details,
        remediation="Check the API documentation for correct request format at /docs",
    )


@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Handle business rule violations and invalid recurrence rules with 400."""
    logger.warning("validation_error", path=request.url.path, code=exc.code, message=exc.message)
    return _error_response(
        request,
        status.HTTP_400_BAD_REQUEST,
        "ValidationError",
        exc.message,
        _domain_details(exc),
        remediation=REMEDIATION_HINTS.get(exc.code),
    )


@app.exception_handler(NotFoundError)
async def not_found_exception_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    """Handle missing entities with 404."""
    logger.info("not_found", path=request.url.path, code=exc.code, message=exc.message)
    return _error_response(
        request,
        status.HTTP_404_NOT_FOUND,
        "NotFound",
        exc.message,
        _domain_details(exc),
        remediation=REMEDIATION_HINTS.get(exc.code),
    )


@app.exception_handler(ProviderError)
async def provider_exception_handler(request: Request, exc: ProviderError) -> JSONResponse:
    """
    Handle failures of Stripe, Resend or the document renderer.

    Returns 502 Bad Gateway.
    """
    logger.error("provider_error", path=request.url.path, provider=exc.provider, code=exc.code, message=exc.message)
    hint_code = ErrorCode.STRIPE_API_ERROR if exc.provider == "stripe" else ErrorCode.EXTERNAL_SERVICE_ERROR
    return _error_response(
        request,
        status.HTTP_502_BAD_GATEWAY,
        "ProviderError",
        exc.message,
        _domain_details(exc),
        remediation=REMEDIATION_HINTS.get(hint_code),
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """
    Handle database errors.

    Returns 503 Service Unavailable for database connection issues.
    """
    logger.error(
        "database_error",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
        error_message=str(exc),
    )
    # Internal database details stay out of production responses
    error_message = "Database temporarily unavailable" if settings.app_env == "production" else str(exc)
    return _error_response(
        request,
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "DatabaseError",
        "A database error occurred",
        [{"code": ErrorCode.DATABASE_ERROR, "message": error_message}],
        remediation=REMEDIATION_HINTS.get(ErrorCode.DATABASE_ERROR),
        headers={"Retry-After": "30"},
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle all other uncaught exceptions.

    Logs the stack trace and returns a safe 500 response.
    """
    logger.exception(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        exception_type=type(exc).__name__,
        exception_message=str(exc),
        stack_trace=traceback.format_exc(),
    )
    return _error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "InternalServerError",
        "An unexpected error occurred",
        [{"code": ErrorCode.INTERNAL_ERROR, "message": str(exc) if settings.debug else "Internal server error"}],
        remediation="Please contact support with the request ID",
    )


@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """Root endpoint with API information."""
    return {
        "service": "Invoicing and Payment Reconciliation API",
        "version": "0.1.0",
        "status": "operational",
        "docs": "/docs",
    }


app.include_router(health.router, tags=["Health"])
app.include_router(invoices.router, prefix="/v1")
app.include_router(recurring_invoices.router, prefix="/v1")
app.include_router(payments.router, prefix="/v1")
app.include_router(stripe_webhooks.router)

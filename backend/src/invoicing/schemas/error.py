"""Structured error response schemas."""
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ErrorDetail(BaseModel):
    """Detailed error information."""

    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    field: str | None = Field(default=None, description="Field that caused the error (for validation errors)")
    value: Any | None = Field(default=None, description="Invalid value (for validation errors)")


class ErrorResponse(BaseModel):
    """Standard error response structure.

    Every API error carries an error type, a message, optional field-level details,
    a remediation hint and the request id for tracing.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": "ValidationError",
                "message": "client_id is required",
                "details": [
                    {
                        "code": "missing_required_field",
                        "message": "client_id is required",
                        "field": "client_id",
                        "value": None,
                    }
                ],
                "remediation": "Include every required field in the request body.",
                "request_id": "req_1234567890",
                "timestamp": "2024-01-15T10:30:00Z",
            }
        }
    )

    error: str = Field(..., description="Error type (e.g., 'ValidationError', 'NotFound', 'ProviderError')")
    message: str = Field(..., description="Primary error message")
    details: list[ErrorDetail] | None = Field(
        default=None, description="Detailed error information (for validation errors)"
    )
    remediation: str | None = Field(default=None, description="Suggestion for fixing the error")
    request_id: str | None = Field(default=None, description="Request ID for tracing")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Error timestamp")


class ErrorCode:
    """Standard error codes used across the API."""

    # Validation errors (400)
    VALIDATION_ERROR = "validation_error"
    MISSING_REQUIRED_FIELD = "missing_required_field"
    INVALID_CURRENCY = "invalid_currency"
    INVALID_AMOUNT = "invalid_amount"
    INVALID_INTERVAL = "invalid_interval"

    # Business logic errors (400)
    INVALID_STATE_TRANSITION = "invalid_state_transition"
    INVOICE_ALREADY_PAID = "invoice_already_paid"
    INVOICE_NOT_PAYABLE = "invoice_not_payable"
    INVOICE_HAS_PAYMENTS = "invoice_has_payments"
    NOTHING_TO_REFUND = "nothing_to_refund"

    # Not found errors (404)
    NOT_FOUND = "not_found"
    USER_NOT_FOUND = "user_not_found"
    CLIENT_NOT_FOUND = "client_not_found"
    INVOICE_NOT_FOUND = "invoice_not_found"
    PAYMENT_NOT_FOUND = "payment_not_found"
    RECURRING_INVOICE_NOT_FOUND = "recurring_invoice_not_found"

    # External service errors (502, 503)
    STRIPE_API_ERROR = "stripe_api_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"
    DATABASE_ERROR = "database_error"

    # Internal errors (500)
    INTERNAL_ERROR = "internal_error"


# Remediation hints for common errors
REMEDIATION_HINTS = {
    ErrorCode.MISSING_REQUIRED_FIELD: "Include every required field in the request body.",
    ErrorCode.INVALID_CURRENCY: "Use a valid 3-letter ISO 4217 currency code (e.g., USD, EUR, GBP)",
    ErrorCode.INVALID_AMOUNT: "Provide a positive amount with at most two decimal places (e.g., 10.00)",
    ErrorCode.INVALID_INTERVAL: "Use one of: day, week, month, year. Anchors: day_of_month 1-31, day_of_week 0-6.",
    ErrorCode.INVALID_STATE_TRANSITION: "Check the current status of the resource before changing it.",
    ErrorCode.INVOICE_ALREADY_PAID: "Cannot modify a paid invoice. Issue a refund instead.",
    ErrorCode.INVOICE_NOT_PAYABLE: "Send the invoice to the client before collecting payment.",
    ErrorCode.INVOICE_HAS_PAYMENTS: "Invoices with payments are kept for audit. Void the invoice instead.",
    ErrorCode.NOTHING_TO_REFUND: "Only settled card payments with a remaining balance can be refunded.",
    ErrorCode.INVOICE_NOT_FOUND: "Verify the invoice ID is correct and the invoice exists",
    ErrorCode.CLIENT_NOT_FOUND: "Verify the client ID is correct and the client exists",
    ErrorCode.STRIPE_API_ERROR: "Stripe payment processing is temporarily unavailable. Please try again later.",
    ErrorCode.EXTERNAL_SERVICE_ERROR: "An upstream provider failed. Please try again later.",
    ErrorCode.DATABASE_ERROR: "Database temporarily unavailable. Please try again in a few moments.",
}

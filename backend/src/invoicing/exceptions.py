"""Domain exceptions raised by services and mapped to HTTP responses in main."""
from typing import Any, Optional


class InvoicingError(Exception):
    """Base class for errors raised by the invoicing services."""

    code = "internal_error"

    def __init__(self, message: str, code: Optional[str] = None, field: Optional[str] = None, **details: Any):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.field = field
        self.details = details


class ValidationError(InvoicingError, ValueError):
    """Caller supplied input that fails a required-field or shape check. Never retried."""

    code = "validation_error"


class InvalidIntervalError(ValidationError):
    """Recurrence rule names an interval or anchor that cannot be scheduled."""

    code = "invalid_interval"


class NotFoundError(InvoicingError, LookupError):
    """Referenced entity does not exist."""

    code = "not_found"


class ProviderError(InvoicingError):
    """External provider (Stripe, Resend, document renderer) call failed."""

    code = "external_service_error"

    def __init__(self, message: str, provider: str = "stripe", **kwargs: Any):
        super().__init__(message, **kwargs)
        self.provider = provider

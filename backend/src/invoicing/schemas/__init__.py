"""Pydantic schemas for API request/response validation."""

from invoicing.schemas.error import ErrorCode, ErrorDetail, ErrorResponse
from invoicing.schemas.invoice import (
    InvoiceCreate,
    InvoiceItemInput,
    InvoiceItemResponse,
    InvoiceList,
    InvoiceResponse,
    InvoiceUpdate,
)
from invoicing.schemas.payment import (
    CheckoutSessionResponse,
    ManualPaymentRequest,
    PaymentList,
    PaymentResponse,
    RefundRequest,
    RefundResponse,
)
from invoicing.schemas.recurring_invoice import (
    RecurringInvoiceCreate,
    RecurringInvoiceCreated,
    RecurringInvoiceList,
    RecurringInvoiceResponse,
    RecurringInvoiceUpdate,
    RecurringSweepResult,
    SweepError,
)

__all__ = [
    "ErrorCode",
    "ErrorDetail",
    "ErrorResponse",
    "InvoiceCreate",
    "InvoiceItemInput",
    "InvoiceItemResponse",
    "InvoiceList",
    "InvoiceResponse",
    "InvoiceUpdate",
    "CheckoutSessionResponse",
    "ManualPaymentRequest",
    "PaymentList",
    "PaymentResponse",
    "RefundRequest",
    "RefundResponse",
    "RecurringInvoiceCreate",
    "RecurringInvoiceCreated",
    "RecurringInvoiceList",
    "RecurringInvoiceResponse",
    "RecurringInvoiceUpdate",
    "RecurringSweepResult",
    "SweepError",
]

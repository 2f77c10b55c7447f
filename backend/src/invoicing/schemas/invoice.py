"""Pydantic schemas for Invoice model."""
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from invoicing.models.invoice import InvoiceStatus
from invoicing.models.recurring_invoice import RecurringInterval


class InvoiceItemInput(BaseModel):
    """Schema for an invoice line item supplied by the caller."""

    name: str = Field(..., min_length=1, description="Line item name")
    description: str | None = Field(default=None, description="Optional longer description")
    quantity: int = Field(default=1, ge=0, description="Quantity")
    unit_price: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2, description="Unit price in major units")
    tax_rate: Decimal | None = Field(
        default=None, ge=0, le=100, max_digits=5, decimal_places=2, description="Tax rate percentage, e.g. 7.25"
    )


class InvoiceItemResponse(BaseModel):
    """Schema for returning a line item."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    position: int
    name: str
    description: str | None
    quantity: int
    unit_price: Decimal
    tax_rate: Decimal | None
    total: Decimal


class InvoiceCreate(BaseModel):
    """Schema for creating a new invoice.

    user_id and client_id are checked by the service so that a missing identifier
    is reported as a domain validation error.
    """

    user_id: UUID | None = Field(default=None, description="Issuing user")
    client_id: UUID | None = Field(default=None, description="Invoiced client")
    title: str | None = Field(default=None, description="Invoice title")
    notes: str | None = Field(default=None, description="Free-form notes printed on the invoice")
    status: InvoiceStatus = Field(default=InvoiceStatus.DRAFT, description="Initial status")
    currency: str | None = Field(default=None, min_length=3, max_length=3, description="ISO 4217 currency code")
    issue_date: datetime | None = Field(default=None, description="Issue date (defaults to now)")
    due_date: datetime | None = Field(default=None, description="Payment due date")
    items: list[InvoiceItemInput] = Field(default_factory=list, description="Line items")
    invoice_number: str | None = Field(default=None, description="Explicit number; generated when omitted")
    send_email: bool = Field(default=True, description="Deliver document and email when client-visible")

    recurring: bool = Field(default=False, description="Invoice repeats on a schedule")
    recurring_interval: RecurringInterval | None = None
    recurring_day_of_month: int | None = Field(default=None, ge=1, le=31)
    recurring_day_of_week: int | None = Field(default=None, ge=0, le=6)
    recurring_parent_id: UUID | None = Field(default=None, description="Originating recurring schedule")
    recurring_period_start: datetime | None = Field(default=None, description="Billing period this invoice covers")


class InvoiceUpdate(BaseModel):
    """Schema for updating an invoice. Supplied items replace the existing set."""

    title: str | None = None
    notes: str | None = None
    status: InvoiceStatus | None = None
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    issue_date: datetime | None = None
    due_date: datetime | None = None
    items: list[InvoiceItemInput] | None = Field(default=None, description="Full replacement item list")
    send_email: bool = Field(default=False, description="Email the client when the invoice becomes visible")


class InvoiceResponse(BaseModel):
    """Schema for returning invoice data."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    client_id: UUID
    invoice_number: str
    title: str | None
    notes: str | None
    status: InvoiceStatus
    currency: str
    issue_date: datetime
    due_date: datetime | None
    sub_total: Decimal
    tax_amount: Decimal
    total: Decimal
    amount_paid: Decimal
    amount_refunded: Decimal
    paid_at: datetime | None
    sent_count: int
    pdf_url: str | None
    recurring: bool
    recurring_interval: str | None
    recurring_day_of_month: int | None
    recurring_day_of_week: int | None
    next_occurrence: datetime | None
    recurring_parent_id: UUID | None
    items: list[InvoiceItemResponse]
    created_at: datetime
    updated_at: datetime


class InvoiceList(BaseModel):
    """Schema for paginated invoice list."""

    items: list[InvoiceResponse]
    total: int
    page: int
    page_size: int

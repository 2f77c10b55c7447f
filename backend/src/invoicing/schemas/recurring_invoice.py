"""Pydantic schemas for recurring invoice schedules."""
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from invoicing.models.recurring_invoice import RecurringInterval, RecurringStatus
from invoicing.schemas.invoice import InvoiceItemInput, InvoiceResponse


class RecurringInvoiceCreate(BaseModel):
    """Schema for creating a schedule."""

    user_id: UUID
    client_id: UUID
    title: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    interval: RecurringInterval
    day_of_month: int | None = Field(default=None, ge=1, le=31)
    day_of_week: int | None = Field(default=None, ge=0, le=6, description="0 = Sunday")
    next_send_date: datetime | None = Field(default=None, description="First scheduled send (defaults to now)")
    send_first_now: bool = Field(default=False, description="Issue the first invoice immediately")
    items: list[InvoiceItemInput] | None = Field(
        default=None, description="Line items for the first invoice; defaults to one line for the amount"
    )
    auto_pay: bool = False
    stripe_customer_id: str | None = None
    stripe_payment_method_id: str | None = None


class RecurringInvoiceUpdate(BaseModel):
    """Schema for updating a schedule. Status changes go through pause/cancel."""

    title: str | None = Field(default=None, min_length=1)
    amount: Decimal | None = Field(default=None, gt=0, max_digits=12, decimal_places=2)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    interval: RecurringInterval | None = None
    day_of_month: int | None = Field(default=None, ge=1, le=31)
    day_of_week: int | None = Field(default=None, ge=0, le=6)
    next_send_date: datetime | None = None
    auto_pay: bool | None = None
    stripe_customer_id: str | None = None
    stripe_payment_method_id: str | None = None


class RecurringInvoiceResponse(BaseModel):
    """Schema for returning a schedule."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    client_id: UUID
    title: str
    amount: Decimal
    currency: str
    interval: str
    day_of_month: int | None
    day_of_week: int | None
    next_send_date: datetime
    status: RecurringStatus
    auto_pay: bool
    first_paid_at: datetime | None
    last_sent_at: datetime | None
    created_at: datetime
    updated_at: datetime


class RecurringInvoiceCreated(BaseModel):
    """Created schedule plus the first invoice when it was issued immediately."""

    recurring_invoice: RecurringInvoiceResponse
    first_invoice: InvoiceResponse | None = None


class RecurringInvoiceList(BaseModel):
    """Schema for paginated schedule list."""

    items: list[RecurringInvoiceResponse]
    total: int
    page: int
    page_size: int


class SweepError(BaseModel):
    """A schedule the sweep could not process."""

    id: str
    error: str


class RecurringSweepResult(BaseModel):
    """Outcome of one pass over due schedules."""

    processed: int
    errors: list[SweepError]

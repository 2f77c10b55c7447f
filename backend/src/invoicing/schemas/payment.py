"""Pydantic schemas for payment entities."""
from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from invoicing.models.payment import PaymentProvider, PaymentStatus


class PaymentResponse(BaseModel):
    """Schema for payment response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    invoice_id: UUID
    client_id: Optional[UUID] = None
    provider: PaymentProvider
    status: PaymentStatus
    amount: Decimal
    currency: str
    fee_amount: Optional[Decimal] = None
    net_amount: Optional[Decimal] = None
    refunded_amount: Decimal
    paid_at: Optional[datetime] = None
    last_error: Optional[str] = None
    stripe_payment_intent_id: Optional[str] = None
    stripe_charge_id: Optional[str] = None
    stripe_checkout_session_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class PaymentList(BaseModel):
    """Schema for paginated list of payments."""

    items: List[PaymentResponse]
    total: int
    page: int
    page_size: int


class CheckoutSessionResponse(BaseModel):
    """Hosted checkout page created for an invoice."""

    payment_id: UUID
    session_id: str
    url: Optional[str] = None


class RefundRequest(BaseModel):
    """Refund request. Omitting amount refunds the full remaining balance."""

    amount: Optional[int] = Field(default=None, gt=0, description="Amount in minor units (cents)")
    reason: Optional[Literal["duplicate", "fraud", "fraudulent", "requested_by_customer"]] = None


class RefundResponse(BaseModel):
    """Result of a refund request."""

    refund_id: str
    status: Optional[str] = None
    amount: Decimal
    payment: PaymentResponse


class ManualPaymentRequest(BaseModel):
    """Payment received outside Stripe (cash, bank transfer)."""

    amount: Optional[Decimal] = Field(default=None, gt=0, max_digits=12, decimal_places=2)
    paid_at: Optional[datetime] = None

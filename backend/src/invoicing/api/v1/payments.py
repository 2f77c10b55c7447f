"""Payment endpoints. Payments are created by checkout, auto-pay and manual recording."""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from invoicing.adapters.stripe_adapter import StripeAdapter
from invoicing.api.deps import get_db, get_stripe_adapter
from invoicing.models.payment import PaymentStatus
from invoicing.schemas.payment import PaymentList, PaymentResponse
from invoicing.services.payment_service import PaymentService

router = APIRouter(prefix="/payments", tags=["payments"])


@router.get("", response_model=PaymentList)
async def list_payments(
    invoice_id: Optional[UUID] = Query(None, description="Filter by invoice ID"),
    status_filter: Optional[PaymentStatus] = Query(None, alias="status", description="Filter by payment status"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(100, ge=1, le=1000, description="Results per page"),
    db: AsyncSession = Depends(get_db),
    stripe_adapter: StripeAdapter = Depends(get_stripe_adapter),
) -> PaymentList:
    """
    List payments with optional filters.

    - **invoice_id**: Filter by specific invoice
    - **status**: pending, succeeded, failed, canceled, refunded, partially_refunded
    """
    service = PaymentService(db, stripe_adapter=stripe_adapter)
    payments, total = await service.list_payments(
        invoice_id=invoice_id,
        status=status_filter,
        page=page,
        page_size=page_size,
    )
    return PaymentList(
        items=[PaymentResponse.model_validate(p) for p in payments],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment(
    payment_id: UUID,
    db: AsyncSession = Depends(get_db),
    stripe_adapter: StripeAdapter = Depends(get_stripe_adapter),
) -> PaymentResponse:
    """Get payment details, including Stripe ids, fees and refunded amount."""
    service = PaymentService(db, stripe_adapter=stripe_adapter)
    return PaymentResponse.model_validate(await service.get_payment(payment_id))

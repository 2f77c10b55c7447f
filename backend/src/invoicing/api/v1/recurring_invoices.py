"""Recurring invoice schedule endpoints."""
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from invoicing.adapters.stripe_adapter import StripeAdapter
from invoicing.api.deps import get_db, get_notification_service, get_pdf_service, get_stripe_adapter
from invoicing.integrations.notification_service import NotificationService
from invoicing.models.recurring_invoice import RecurringStatus
from invoicing.schemas.invoice import InvoiceResponse
from invoicing.schemas.recurring_invoice import (
    RecurringInvoiceCreate,
    RecurringInvoiceCreated,
    RecurringInvoiceList,
    RecurringInvoiceResponse,
    RecurringInvoiceUpdate,
    RecurringSweepResult,
)
from invoicing.services.invoice_pdf_service import InvoicePDFService
from invoicing.services.recurring_invoice_service import RecurringInvoiceService

router = APIRouter(prefix="/recurring-invoices", tags=["Recurring Invoices"])


def _service(
    db: AsyncSession = Depends(get_db),
    pdf_service: InvoicePDFService = Depends(get_pdf_service),
    notifier: NotificationService = Depends(get_notification_service),
    stripe_adapter: StripeAdapter = Depends(get_stripe_adapter),
) -> RecurringInvoiceService:
    return RecurringInvoiceService(db, pdf_service=pdf_service, notifier=notifier, stripe_adapter=stripe_adapter)


@router.post("", response_model=RecurringInvoiceCreated, status_code=status.HTTP_201_CREATED)
async def create_recurring_invoice(
    schedule_data: RecurringInvoiceCreate,
    service: RecurringInvoiceService = Depends(_service),
) -> RecurringInvoiceCreated:
    """
    Create a recurring invoice schedule.

    With `send_first_now` the first invoice is issued immediately and returned.
    Auto-pay schedules need a saved Stripe customer and payment method.
    """
    schedule, first_invoice = await service.create_recurring_invoice(schedule_data)
    return RecurringInvoiceCreated(
        recurring_invoice=RecurringInvoiceResponse.model_validate(schedule),
        first_invoice=InvoiceResponse.model_validate(first_invoice) if first_invoice else None,
    )


@router.get("", response_model=RecurringInvoiceList)
async def list_recurring_invoices(
    user_id: UUID | None = Query(default=None, description="Filter by issuing user"),
    status: RecurringStatus | None = Query(default=None, description="Filter by status"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    service: RecurringInvoiceService = Depends(_service),
) -> RecurringInvoiceList:
    """List schedules ordered by next send date."""
    schedules, total = await service.list_recurring_invoices(
        user_id=user_id, status=status, page=page, page_size=page_size
    )
    return RecurringInvoiceList(
        items=[RecurringInvoiceResponse.model_validate(s) for s in schedules],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post("/process-due", response_model=RecurringSweepResult)
async def process_due_recurring_invoices(
    service: RecurringInvoiceService = Depends(_service),
) -> RecurringSweepResult:
    """
    Issue invoices for every due schedule.

    Meant for an external scheduler. Safe to call repeatedly; one failing
    schedule never blocks the others.
    """
    return RecurringSweepResult(**await service.process_due_recurring_invoices())


@router.get("/{recurring_invoice_id}", response_model=RecurringInvoiceResponse)
async def get_recurring_invoice(
    recurring_invoice_id: UUID,
    service: RecurringInvoiceService = Depends(_service),
) -> RecurringInvoiceResponse:
    """Get schedule by ID."""
    return RecurringInvoiceResponse.model_validate(await service.get_recurring_invoice(recurring_invoice_id))


@router.patch("/{recurring_invoice_id}", response_model=RecurringInvoiceResponse)
async def update_recurring_invoice(
    recurring_invoice_id: UUID,
    schedule_data: RecurringInvoiceUpdate,
    service: RecurringInvoiceService = Depends(_service),
) -> RecurringInvoiceResponse:
    """Update a schedule. Cancelled schedules are read-only."""
    schedule = await service.update_recurring_invoice(recurring_invoice_id, schedule_data)
    return RecurringInvoiceResponse.model_validate(schedule)


@router.post("/{recurring_invoice_id}/pause", response_model=RecurringInvoiceResponse)
async def toggle_pause(
    recurring_invoice_id: UUID,
    service: RecurringInvoiceService = Depends(_service),
) -> RecurringInvoiceResponse:
    """Pause an active schedule, or resume a paused one."""
    return RecurringInvoiceResponse.model_validate(await service.toggle_pause(recurring_invoice_id))


@router.post("/{recurring_invoice_id}/cancel", response_model=RecurringInvoiceResponse)
async def cancel_recurring_invoice(
    recurring_invoice_id: UUID,
    service: RecurringInvoiceService = Depends(_service),
) -> RecurringInvoiceResponse:
    """Cancel a schedule permanently."""
    return RecurringInvoiceResponse.model_validate(await service.cancel_recurring_invoice(recurring_invoice_id))


@router.delete("/{recurring_invoice_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_recurring_invoice(
    recurring_invoice_id: UUID,
    service: RecurringInvoiceService = Depends(_service),
) -> Response:
    """Delete a schedule. Invoices it generated are kept."""
    await service.delete_recurring_invoice(recurring_invoice_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

"""Invoice API endpoints."""
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query, status
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from invoicing.adapters.stripe_adapter import StripeAdapter
from invoicing.api.deps import get_db, get_notification_service, get_pdf_service, get_stripe_adapter
from invoicing.integrations.notification_service import NotificationService
from invoicing.models.invoice import InvoiceStatus
from invoicing.schemas.invoice import InvoiceCreate, InvoiceList, InvoiceResponse, InvoiceUpdate
from invoicing.schemas.payment import (
    CheckoutSessionResponse,
    ManualPaymentRequest,
    PaymentResponse,
    RefundRequest,
    RefundResponse,
)
from invoicing.services.invoice_pdf_service import InvoicePDFService
from invoicing.services.invoice_service import InvoiceService
from invoicing.services.payment_service import PaymentService
from invoicing.utils.currency import from_minor_units

router = APIRouter(prefix="/invoices", tags=["Invoices"])


def _invoice_service(
    db: AsyncSession = Depends(get_db),
    pdf_service: InvoicePDFService = Depends(get_pdf_service),
    notifier: NotificationService = Depends(get_notification_service),
) -> InvoiceService:
    return InvoiceService(db, pdf_service=pdf_service, notifier=notifier)


def _payment_service(
    db: AsyncSession = Depends(get_db),
    stripe_adapter: StripeAdapter = Depends(get_stripe_adapter),
    notifier: NotificationService = Depends(get_notification_service),
) -> PaymentService:
    return PaymentService(db, stripe_adapter=stripe_adapter, notifier=notifier)


@router.post("", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
async def create_invoice(
    invoice_data: InvoiceCreate,
    service: InvoiceService = Depends(_invoice_service),
) -> InvoiceResponse:
    """
    Create an invoice with its line items.

    Totals are computed server-side. Invoices created as **sent**, **open** or
    **unpaid** get a stored PDF and are emailed to the client unless
    `send_email` is false. Delivery failures never undo the invoice.
    """
    invoice = await service.create_invoice(invoice_data)
    return InvoiceResponse.model_validate(invoice)


@router.get("", response_model=InvoiceList)
async def list_invoices(
    user_id: UUID | None = Query(default=None, description="Filter by issuing user"),
    client_id: UUID | None = Query(default=None, description="Filter by client"),
    status: InvoiceStatus | None = Query(default=None, description="Filter by status"),
    page: int = Query(default=1, ge=1, description="Page number (1-indexed)"),
    page_size: int = Query(default=20, ge=1, le=100, description="Items per page (max 100)"),
    service: InvoiceService = Depends(_invoice_service),
) -> InvoiceList:
    """List invoices, newest first."""
    invoices, total = await service.list_invoices(
        user_id=user_id,
        client_id=client_id,
        status=status,
        page=page,
        page_size=page_size,
    )
    return InvoiceList(
        items=[InvoiceResponse.model_validate(i) for i in invoices],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(
    invoice_id: UUID,
    service: InvoiceService = Depends(_invoice_service),
) -> InvoiceResponse:
    """Get invoice by ID including line items."""
    return InvoiceResponse.model_validate(await service.get_invoice(invoice_id))


@router.patch("/{invoice_id}", response_model=InvoiceResponse)
async def update_invoice(
    invoice_id: UUID,
    invoice_data: InvoiceUpdate,
    service: InvoiceService = Depends(_invoice_service),
) -> InvoiceResponse:
    """
    Update an invoice.

    Supplying `items` replaces the whole item list and recalculates totals.
    **paid** and **partially_paid** are set only by payment reconciliation.
    """
    invoice = await service.update_invoice(invoice_id, invoice_data)
    return InvoiceResponse.model_validate(invoice)


@router.delete("/{invoice_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_invoice(
    invoice_id: UUID,
    service: InvoiceService = Depends(_invoice_service),
) -> Response:
    """Delete an invoice that has no payments."""
    await service.delete_invoice(invoice_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{invoice_id}/void", response_model=InvoiceResponse)
async def void_invoice(
    invoice_id: UUID,
    service: InvoiceService = Depends(_invoice_service),
) -> InvoiceResponse:
    """
    Void an invoice.

    Invoices with collected money cannot be voided; refund them first.
    A void invoice keeps its status through later payment events.
    """
    return InvoiceResponse.model_validate(await service.void_invoice(invoice_id))


@router.post("/{invoice_id}/send", response_model=InvoiceResponse)
async def resend_invoice(
    invoice_id: UUID,
    service: InvoiceService = Depends(_invoice_service),
) -> InvoiceResponse:
    """Email the invoice to its client again."""
    return InvoiceResponse.model_validate(await service.resend_invoice(invoice_id))


@router.get("/{invoice_id}/pdf")
async def get_invoice_pdf(
    invoice_id: UUID,
    service: InvoiceService = Depends(_invoice_service),
) -> Response:
    """Render the invoice as a downloadable PDF."""
    invoice = await service.get_invoice(invoice_id)
    pdf_bytes = await service.render_invoice_pdf(invoice)
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="invoice-{invoice.invoice_number}.pdf"',
            "Content-Length": str(len(pdf_bytes)),
        },
    )


@router.post("/{invoice_id}/checkout", response_model=CheckoutSessionResponse, status_code=status.HTTP_201_CREATED)
async def create_checkout_session(
    invoice_id: UUID,
    success_url: str | None = Query(default=None, description="Redirect after a successful payment"),
    cancel_url: str | None = Query(default=None, description="Redirect when checkout is abandoned"),
    service: PaymentService = Depends(_payment_service),
) -> CheckoutSessionResponse:
    """
    Start a Stripe Checkout session for the outstanding balance.

    The payment is settled by the Stripe webhook, not by this call.
    """
    session = await service.create_checkout_session(invoice_id, success_url=success_url, cancel_url=cancel_url)
    return CheckoutSessionResponse(**session)


@router.post("/{invoice_id}/refund", response_model=RefundResponse)
async def refund_invoice(
    invoice_id: UUID,
    refund_data: RefundRequest | None = Body(default=None),
    service: PaymentService = Depends(_payment_service),
) -> RefundResponse:
    """Refund the latest Stripe payment of an invoice, fully or in part."""
    refund_data = refund_data or RefundRequest()
    refund, payment = await service.refund_invoice(invoice_id, amount=refund_data.amount, reason=refund_data.reason)
    return RefundResponse(
        refund_id=refund["id"],
        status=refund.get("status"),
        amount=from_minor_units(refund["amount"], payment.currency),
        payment=PaymentResponse.model_validate(payment),
    )


@router.post("/{invoice_id}/mark-paid", response_model=InvoiceResponse)
async def record_manual_payment(
    invoice_id: UUID,
    payment_data: ManualPaymentRequest | None = Body(default=None),
    service: PaymentService = Depends(_payment_service),
) -> InvoiceResponse:
    """Record money received outside Stripe. Defaults to the outstanding balance."""
    payment_data = payment_data or ManualPaymentRequest()
    invoice = await service.record_manual_payment(invoice_id, amount=payment_data.amount, paid_at=payment_data.paid_at)
    return InvoiceResponse.model_validate(invoice)

"""Invoice service for business logic."""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Sequence
from uuid import UUID

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from invoicing import metrics
from invoicing.config import settings
from invoicing.exceptions import NotFoundError, ValidationError
from invoicing.integrations.notification_service import NotificationService
from invoicing.models.client import Client
from invoicing.models.invoice import (
    CLIENT_VISIBLE_STATUSES,
    PAYMENT_DERIVED_STATUSES,
    Invoice,
    InvoiceItem,
    InvoiceStatus,
)
from invoicing.models.payment import SETTLED_STATUSES, Payment
from invoicing.models.recurring_invoice import RecurringInvoice, RecurringStatus
from invoicing.models.user import User
from invoicing.schemas.error import ErrorCode
from invoicing.schemas.invoice import InvoiceCreate, InvoiceItemInput, InvoiceUpdate
from invoicing.services.calculator import ItemTotals, calculate_invoice_totals
from invoicing.services.invoice_pdf_service import InvoicePDFService
from invoicing.services.recurrence import get_next_occurrence
from invoicing.utils.currency import quantize_money, validate_currency

logger = structlog.get_logger(__name__)

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class PaidAmounts:
    """Net money collected on an invoice."""

    gross: Decimal
    refunded: Decimal

    @property
    def paid(self) -> Decimal:
        return self.gross - self.refunded


class InvoiceService:
    """Service layer for invoice operations."""

    def __init__(
        self,
        db: AsyncSession,
        pdf_service: InvoicePDFService | None = None,
        notifier: NotificationService | None = None,
    ):
        """Initialize invoice service with database session and delivery collaborators."""
        self.db = db
        self.pdf_service = pdf_service or InvoicePDFService()
        self.notifier = notifier or NotificationService()

    async def generate_invoice_number(self, user_id: UUID, prefix: str = "INV") -> str:
        """
        Generate the next sequential invoice number for a user.

        Format: {prefix}-{sequential_number} (e.g., INV-0001, SUB-0002). The sequence
        continues from the highest number issued so far, so deleted invoices leave gaps
        instead of freeing numbers. Custom numbers without a numeric suffix are ignored.
        """
        result = await self.db.execute(
            select(Invoice.invoice_number).where(
                Invoice.user_id == user_id, Invoice.invoice_number.like(f"{prefix}-%")
            )
        )
        highest = 0
        for number in result.scalars().all():
            suffix = number[len(prefix) + 1:]
            if suffix.isdigit():
                highest = max(highest, int(suffix))
        return f"{prefix}-{highest + 1:04d}"

    async def create_invoice(self, data: InvoiceCreate) -> Invoice:
        """
        Create an invoice and its line items in one transaction.

        Delivery (PDF and email) runs after the commit and never undoes it.

        Args:
            data: Invoice creation data

        Returns:
            Persisted invoice with items

        Raises:
            ValidationError: If user or client is missing or the input is inconsistent
            NotFoundError: If user or client does not exist
        """
        try:
            invoice = await self.add_invoice(data)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        metrics.invoices_created_total.labels(status=invoice.status.value, currency=invoice.currency).inc()
        await self.deliver_invoice(invoice, send_email=data.send_email)
        return invoice

    async def add_invoice(self, data: InvoiceCreate) -> Invoice:
        """
        Add an invoice and its items to the current transaction without committing.

        The caller commits, then calls deliver_invoice. Used where the invoice must
        commit together with other rows, such as a recurring schedule's advance.
        """
        if data.user_id is None:
            raise ValidationError("user_id is required", code=ErrorCode.MISSING_REQUIRED_FIELD, field="user_id")
        if data.client_id is None:
            raise ValidationError("client_id is required", code=ErrorCode.MISSING_REQUIRED_FIELD, field="client_id")
        self._check_assignable_status(data.status)

        user, client = await self._load_parties(data.user_id, data.client_id)
        currency = self._normalize_currency(data.currency)
        totals = calculate_invoice_totals(data.items)
        issue_date = data.issue_date or datetime.utcnow()

        next_occurrence = None
        if data.recurring and data.recurring_interval:
            next_occurrence = get_next_occurrence(
                issue_date,
                data.recurring_interval,
                day_of_month=data.recurring_day_of_month,
                day_of_week=data.recurring_day_of_week,
            )

        invoice_number = data.invoice_number or await self.generate_invoice_number(user.id)
        invoice = Invoice(
            user_id=user.id,
            client_id=client.id,
            invoice_number=invoice_number,
            title=data.title,
            notes=data.notes,
            status=data.status,
            currency=currency,
            issue_date=issue_date,
            due_date=data.due_date,
            sub_total=totals.sub_total,
            tax_amount=totals.tax_amount,
            total=totals.total,
            amount_paid=ZERO,
            amount_refunded=ZERO,
            sent_count=0,
            recurring=data.recurring,
            recurring_interval=data.recurring_interval.value if data.recurring_interval else None,
            recurring_day_of_month=data.recurring_day_of_month,
            recurring_day_of_week=data.recurring_day_of_week,
            next_occurrence=next_occurrence,
            recurring_parent_id=data.recurring_parent_id,
            recurring_period_start=data.recurring_period_start,
            items=self._build_items(data.items, totals.items),
        )
        self.db.add(invoice)
        await self.db.flush()

        logger.info(
            "invoice_created",
            invoice_id=str(invoice.id),
            invoice_number=invoice.invoice_number,
            status=invoice.status.value,
            total=str(invoice.total),
        )
        return invoice

    async def deliver_invoice(self, invoice: Invoice, send_email: bool = True) -> None:
        """Store the document and email a committed invoice. Failures are logged only."""
        user, client = await self._load_parties(invoice.user_id, invoice.client_id)
        await self._deliver_to_client(invoice, client, user, generate_document=True, send_email=send_email)

    async def update_invoice(self, invoice_id: UUID, data: InvoiceUpdate) -> Invoice:
        """
        Update invoice fields and, when items are supplied, replace every item.

        Item replacement and the recalculated totals commit together or not at all.

        Raises:
            NotFoundError: If invoice not found
            ValidationError: If a payment-derived status is requested or a paid invoice's items change
        """
        invoice = await self.get_invoice(invoice_id)

        if data.status is not None:
            self._check_assignable_status(data.status)
            if data.status == InvoiceStatus.VOID:
                raise ValidationError(
                    "Use the void operation to void an invoice", code=ErrorCode.INVALID_STATE_TRANSITION, field="status"
                )
        if data.items is not None and invoice.status in (InvoiceStatus.PAID, InvoiceStatus.VOID):
            raise ValidationError(
                f"Cannot change items of a {invoice.status.value} invoice", code=ErrorCode.INVOICE_ALREADY_PAID
            )

        was_visible = invoice.status in CLIENT_VISIBLE_STATUSES
        changes = data.model_dump(exclude_unset=True, exclude={"items", "send_email"})
        if "currency" in changes and changes["currency"] is not None:
            changes["currency"] = self._normalize_currency(changes["currency"])

        try:
            for field, value in changes.items():
                if value is None and field in ("status", "currency", "issue_date"):
                    continue
                setattr(invoice, field, value)

            if data.items is not None:
                totals = calculate_invoice_totals(data.items)
                invoice.items.clear()
                await self.db.flush()
                for position, (item, item_totals) in enumerate(zip(data.items, totals.items)):
                    invoice.items.append(self._build_item(position, item, item_totals))
                invoice.sub_total = totals.sub_total
                invoice.tax_amount = totals.tax_amount
                invoice.total = totals.total

                # A new total can settle or unsettle money already collected
                amounts = await self.compute_invoice_paid_amounts(invoice.id)
                if amounts.gross > 0 or invoice.status in PAYMENT_DERIVED_STATUSES:
                    await self.reconcile_invoice_status(invoice.id)

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "invoice_updated",
            invoice_id=str(invoice.id),
            status=invoice.status.value,
            items_replaced=data.items is not None,
            total=str(invoice.total),
        )

        became_visible = not was_visible and invoice.status in CLIENT_VISIBLE_STATUSES
        if became_visible:
            user, client = await self._load_parties(invoice.user_id, invoice.client_id)
            await self._deliver_to_client(
                invoice,
                client,
                user,
                generate_document=not invoice.pdf_url,
                send_email=data.send_email,
            )
        return invoice

    async def get_invoice(self, invoice_id: UUID) -> Invoice:
        """
        Get invoice by ID with items loaded.

        Raises:
            NotFoundError: If invoice not found
        """
        result = await self.db.execute(
            select(Invoice)
            .options(selectinload(Invoice.items))
            .where(Invoice.id == invoice_id)
            .execution_options(populate_existing=True)
        )
        invoice = result.scalar_one_or_none()
        if not invoice:
            raise NotFoundError(f"Invoice {invoice_id} not found", code=ErrorCode.INVOICE_NOT_FOUND)
        return invoice

    async def list_invoices(
        self,
        user_id: UUID | None = None,
        client_id: UUID | None = None,
        status: InvoiceStatus | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[Invoice], int]:
        """
        List invoices with pagination.

        Returns:
            Tuple of (invoices, total_count)
        """
        query = select(Invoice)
        count_query = select(func.count()).select_from(Invoice)

        filters = []
        if user_id:
            filters.append(Invoice.user_id == user_id)
        if client_id:
            filters.append(Invoice.client_id == client_id)
        if status:
            filters.append(Invoice.status == status)
        if filters:
            query = query.where(*filters)
            count_query = count_query.where(*filters)

        total = (await self.db.execute(count_query)).scalar() or 0

        offset = (page - 1) * page_size
        result = await self.db.execute(
            query.order_by(Invoice.created_at.desc()).offset(offset).limit(page_size)
        )
        return list(result.scalars().all()), total

    async def delete_invoice(self, invoice_id: UUID) -> None:
        """
        Delete an invoice and its items.

        Raises:
            NotFoundError: If invoice not found
            ValidationError: If any payment references the invoice
        """
        invoice = await self.get_invoice(invoice_id)
        payment_count = (
            await self.db.execute(select(func.count()).select_from(Payment).where(Payment.invoice_id == invoice.id))
        ).scalar() or 0
        if payment_count:
            raise ValidationError(
                "Invoice has payments and cannot be deleted", code=ErrorCode.INVOICE_HAS_PAYMENTS
            )

        await self.db.delete(invoice)
        await self.db.commit()
        logger.info("invoice_deleted", invoice_id=str(invoice_id))

    async def void_invoice(self, invoice_id: UUID) -> Invoice:
        """
        Void an invoice that has no net payments.

        Raises:
            NotFoundError: If invoice not found
            ValidationError: If money was collected on the invoice
        """
        invoice = await self.get_invoice(invoice_id)
        if invoice.status == InvoiceStatus.VOID:
            return invoice

        amounts = await self.compute_invoice_paid_amounts(invoice.id)
        if amounts.paid > 0:
            raise ValidationError(
                "Cannot void an invoice with collected payments. Refund first.",
                code=ErrorCode.INVOICE_ALREADY_PAID,
            )

        invoice.status = InvoiceStatus.VOID
        await self.db.commit()
        metrics.invoices_voided_total.inc()
        logger.info("invoice_voided", invoice_id=str(invoice.id))
        return invoice

    async def resend_invoice(self, invoice_id: UUID) -> Invoice:
        """
        Email an already issued invoice to its client again.

        Raises:
            ValidationError: If the invoice is still a draft or void
        """
        invoice = await self.get_invoice(invoice_id)
        if invoice.status in (InvoiceStatus.DRAFT, InvoiceStatus.VOID):
            raise ValidationError(
                f"Cannot send a {invoice.status.value} invoice", code=ErrorCode.INVALID_STATE_TRANSITION
            )
        user, client = await self._load_parties(invoice.user_id, invoice.client_id)
        await self._deliver_to_client(invoice, client, user, generate_document=not invoice.pdf_url, send_email=True)
        return invoice

    async def render_invoice_pdf(self, invoice: Invoice) -> bytes:
        """
        Render an invoice to PDF bytes without storing it.

        Raises:
            ProviderError: If the document renderer fails
        """
        user, client = await self._load_parties(invoice.user_id, invoice.client_id)
        return await self.pdf_service.generate_pdf(invoice, client, user)

    async def compute_invoice_paid_amounts(self, invoice_id: UUID) -> PaidAmounts:
        """Sum settled payments and their refunds for an invoice."""
        result = await self.db.execute(
            select(Payment.amount, Payment.refunded_amount).where(
                Payment.invoice_id == invoice_id,
                Payment.status.in_(SETTLED_STATUSES),
            )
        )
        gross = ZERO
        refunded = ZERO
        for amount, refunded_amount in result.all():
            gross += quantize_money(amount)
            refunded += quantize_money(refunded_amount or ZERO)
        return PaidAmounts(gross=gross, refunded=refunded)

    async def reconcile_invoice_status(self, invoice_id: UUID) -> Invoice | None:
        """
        Recompute an invoice's payment status from its payments.

        This is the only place PAID and PARTIALLY_PAID are assigned. The caller owns the
        transaction; changes are flushed, not committed.

        Returns:
            The reconciled invoice, or None if it does not exist
        """
        invoice = await self.db.get(Invoice, invoice_id)
        if not invoice:
            logger.warning("reconcile_invoice_not_found", invoice_id=str(invoice_id))
            return None

        amounts = await self.compute_invoice_paid_amounts(invoice.id)
        invoice.amount_paid = amounts.paid
        invoice.amount_refunded = amounts.refunded

        previous_status = invoice.status
        if previous_status != InvoiceStatus.VOID:
            now = datetime.utcnow()
            if amounts.paid >= quantize_money(invoice.total):
                invoice.status = InvoiceStatus.PAID
                if not invoice.paid_at:
                    invoice.paid_at = now
            elif amounts.paid > 0:
                invoice.status = InvoiceStatus.PARTIALLY_PAID
            elif invoice.due_date and invoice.due_date < now:
                invoice.status = InvoiceStatus.OVERDUE
            else:
                invoice.status = InvoiceStatus.UNPAID

            if invoice.status == InvoiceStatus.PAID and invoice.recurring_parent_id:
                await self._record_first_paid(invoice.recurring_parent_id, now)

        await self.db.flush()
        logger.info(
            "invoice_reconciled",
            invoice_id=str(invoice.id),
            previous_status=previous_status.value,
            status=invoice.status.value,
            amount_paid=str(amounts.paid),
            amount_refunded=str(amounts.refunded),
        )
        return invoice

    async def _record_first_paid(self, schedule_id: UUID, paid_at: datetime) -> None:
        schedule = await self.db.get(RecurringInvoice, schedule_id)
        if not schedule:
            return
        if schedule.first_paid_at is None:
            schedule.first_paid_at = paid_at
        if schedule.status == RecurringStatus.PENDING:
            schedule.status = RecurringStatus.ACTIVE
            logger.info("recurring_invoice_activated", recurring_invoice_id=str(schedule.id))

    async def _deliver_to_client(
        self,
        invoice: Invoice,
        client: Client,
        user: User,
        generate_document: bool,
        send_email: bool,
    ) -> None:
        """Best-effort PDF storage and email for client-visible invoices."""
        if invoice.status not in CLIENT_VISIBLE_STATUSES:
            return

        if generate_document:
            try:
                pdf_url = await self.pdf_service.store_invoice_pdf(invoice, client, user)
            except Exception as e:
                logger.warning("invoice_document_failed", invoice_id=str(invoice.id), error=str(e))
            else:
                invoice.pdf_url = pdf_url
                await self.db.commit()

        if send_email:
            try:
                result = await self.notifier.send_invoice_email(invoice, client, user)
            except Exception as e:
                logger.warning("invoice_email_failed", invoice_id=str(invoice.id), error=str(e))
                return
            if result.get("status") == "sent":
                invoice.sent_count = (invoice.sent_count or 0) + 1
                await self.db.commit()

    async def _load_parties(self, user_id: UUID, client_id: UUID) -> tuple[User, Client]:
        user = await self.db.get(User, user_id)
        if not user:
            raise NotFoundError(f"User {user_id} not found", code=ErrorCode.USER_NOT_FOUND, field="user_id")
        client = await self.db.get(Client, client_id)
        if not client or client.user_id != user.id:
            raise NotFoundError(f"Client {client_id} not found", code=ErrorCode.CLIENT_NOT_FOUND, field="client_id")
        return user, client

    def _build_items(self, items: Sequence[InvoiceItemInput], totals: Sequence[ItemTotals]) -> list[InvoiceItem]:
        return [self._build_item(position, item, t) for position, (item, t) in enumerate(zip(items, totals))]

    def _build_item(self, position: int, item: InvoiceItemInput, totals: ItemTotals) -> InvoiceItem:
        return InvoiceItem(
            position=position,
            name=item.name,
            description=item.description,
            quantity=item.quantity,
            unit_price=quantize_money(item.unit_price),
            tax_rate=item.tax_rate,
            total=totals.total,
        )

    @staticmethod
    def _check_assignable_status(status: InvoiceStatus) -> None:
        if status in PAYMENT_DERIVED_STATUSES:
            raise ValidationError(
                f"Status {status.value} is derived from payments and cannot be set directly",
                code=ErrorCode.INVALID_STATE_TRANSITION,
                field="status",
            )

    @staticmethod
    def _normalize_currency(currency: str | None) -> str:
        value = (currency or settings.default_currency).upper()
        if not validate_currency(value):
            raise ValidationError(f"Unsupported currency {value}", code=ErrorCode.INVALID_CURRENCY, field="currency")
        return value

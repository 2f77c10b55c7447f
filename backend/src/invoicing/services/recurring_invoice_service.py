"""Recurring invoice schedules and the due-schedule sweep."""
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from invoicing import metrics
from invoicing.adapters.stripe_adapter import StripeAdapter
from invoicing.config import settings
from invoicing.exceptions import NotFoundError, ValidationError
from invoicing.integrations.notification_service import NotificationService
from invoicing.models.client import Client
from invoicing.models.invoice import PAYABLE_STATUSES, Invoice, InvoiceStatus
from invoicing.models.payment import Payment
from invoicing.models.recurring_invoice import RecurringInterval, RecurringInvoice, RecurringStatus
from invoicing.models.user import User
from invoicing.schemas.error import ErrorCode
from invoicing.schemas.invoice import InvoiceCreate, InvoiceItemInput
from invoicing.schemas.recurring_invoice import RecurringInvoiceCreate, RecurringInvoiceUpdate
from invoicing.services.invoice_pdf_service import InvoicePDFService
from invoicing.services.invoice_service import InvoiceService
from invoicing.services.payment_service import PaymentService
from invoicing.services.recurrence import get_next_occurrence
from invoicing.utils.currency import quantize_money, validate_currency

logger = structlog.get_logger(__name__)


class RecurringInvoiceService:
    """Service layer for recurring invoice schedules."""

    def __init__(
        self,
        db: AsyncSession,
        pdf_service: InvoicePDFService | None = None,
        notifier: NotificationService | None = None,
        stripe_adapter: StripeAdapter | None = None,
    ):
        self.db = db
        self.notifier = notifier or NotificationService()
        self.invoice_service = InvoiceService(db, pdf_service=pdf_service, notifier=self.notifier)
        self.payment_service = PaymentService(db, stripe_adapter=stripe_adapter, notifier=self.notifier)

    async def create_recurring_invoice(
        self, data: RecurringInvoiceCreate
    ) -> tuple[RecurringInvoice, Invoice | None]:
        """
        Create a schedule and optionally issue its first invoice right away.

        Auto-pay schedules that issue a first invoice stay PENDING until that invoice is paid.

        Returns:
            Tuple of (schedule, first invoice or None)

        Raises:
            NotFoundError: If user or client does not exist
            InvalidIntervalError: If the interval or anchors are invalid
            ValidationError: If auto-pay lacks saved payment details
        """
        user = await self.db.get(User, data.user_id)
        if not user:
            raise NotFoundError(f"User {data.user_id} not found", code=ErrorCode.USER_NOT_FOUND)
        client = await self.db.get(Client, data.client_id)
        if not client or client.user_id != user.id:
            raise NotFoundError(f"Client {data.client_id} not found", code=ErrorCode.CLIENT_NOT_FOUND)
        if data.auto_pay and not (data.stripe_customer_id and data.stripe_payment_method_id):
            raise ValidationError(
                "Auto-pay requires stripe_customer_id and stripe_payment_method_id",
                code=ErrorCode.MISSING_REQUIRED_FIELD,
            )

        now = datetime.utcnow()
        # Validates the rule before anything is stored.
        next_after_now = get_next_occurrence(now, data.interval, data.day_of_month, data.day_of_week)
        if data.send_first_now:
            next_send_date = data.next_send_date or next_after_now
        else:
            next_send_date = data.next_send_date or now

        schedule = RecurringInvoice(
            user_id=user.id,
            client_id=client.id,
            title=data.title,
            amount=quantize_money(data.amount),
            currency=self._normalize_currency(data.currency),
            interval=data.interval.value,
            day_of_month=data.day_of_month,
            day_of_week=data.day_of_week,
            next_send_date=next_send_date,
            status=RecurringStatus.PENDING if data.auto_pay and data.send_first_now else RecurringStatus.ACTIVE,
            auto_pay=data.auto_pay,
            send_first_now=data.send_first_now,
            stripe_customer_id=data.stripe_customer_id,
            stripe_payment_method_id=data.stripe_payment_method_id,
        )
        first_invoice = None
        try:
            self.db.add(schedule)
            await self.db.flush()
            if data.send_first_now:
                first_invoice, _ = await self._issue_invoice(
                    schedule,
                    user,
                    period_start=now,
                    title=f"{schedule.title} - Initial Invoice",
                    notes=f"Initial invoice for recurring series: {schedule.title}",
                    items=data.items,
                )
                schedule.last_sent_at = now
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "recurring_invoice_created",
            recurring_invoice_id=str(schedule.id),
            interval=schedule.interval,
            next_send_date=schedule.next_send_date.isoformat(),
            status=schedule.status.value,
        )

        if first_invoice is not None:
            await self._after_issue(first_invoice, schedule, user, created=True)
        return schedule, first_invoice

    async def get_recurring_invoice(self, recurring_invoice_id: UUID) -> RecurringInvoice:
        """
        Get schedule by ID.

        Raises:
            NotFoundError: If schedule not found
        """
        schedule = await self.db.get(RecurringInvoice, recurring_invoice_id)
        if not schedule:
            raise NotFoundError(
                f"Recurring invoice {recurring_invoice_id} not found", code=ErrorCode.RECURRING_INVOICE_NOT_FOUND
            )
        return schedule

    async def list_recurring_invoices(
        self,
        user_id: UUID | None = None,
        status: RecurringStatus | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[RecurringInvoice], int]:
        """List schedules with pagination."""
        query = select(RecurringInvoice)
        count_query = select(func.count()).select_from(RecurringInvoice)
        filters = []
        if user_id:
            filters.append(RecurringInvoice.user_id == user_id)
        if status:
            filters.append(RecurringInvoice.status == status)
        if filters:
            query = query.where(*filters)
            count_query = count_query.where(*filters)

        total = (await self.db.execute(count_query)).scalar() or 0
        result = await self.db.execute(
            query.order_by(RecurringInvoice.next_send_date).offset((page - 1) * page_size).limit(page_size)
        )
        return list(result.scalars().all()), total

    async def update_recurring_invoice(
        self, recurring_invoice_id: UUID, data: RecurringInvoiceUpdate
    ) -> RecurringInvoice:
        """
        Update schedule fields.

        Raises:
            ValidationError: If the schedule is cancelled
            InvalidIntervalError: If the new rule is invalid
        """
        schedule = await self.get_recurring_invoice(recurring_invoice_id)
        if schedule.status == RecurringStatus.CANCELLED:
            raise ValidationError("Cancelled schedules cannot be changed", code=ErrorCode.INVALID_STATE_TRANSITION)

        changes = data.model_dump(exclude_unset=True)
        if "interval" in changes and changes["interval"] is not None:
            changes["interval"] = RecurringInterval(changes["interval"]).value
        if "amount" in changes and changes["amount"] is not None:
            changes["amount"] = quantize_money(changes["amount"])
        if "currency" in changes and changes["currency"] is not None:
            changes["currency"] = self._normalize_currency(changes["currency"])

        get_next_occurrence(
            datetime.utcnow(),
            changes.get("interval") or schedule.interval,
            changes.get("day_of_month", schedule.day_of_month),
            changes.get("day_of_week", schedule.day_of_week),
        )

        for field, value in changes.items():
            if value is None and field in ("title", "amount", "currency", "interval", "next_send_date", "auto_pay"):
                continue
            setattr(schedule, field, value)
        await self.db.commit()
        logger.info("recurring_invoice_updated", recurring_invoice_id=str(schedule.id), fields=sorted(changes))
        return schedule

    async def toggle_pause(self, recurring_invoice_id: UUID) -> RecurringInvoice:
        """
        Pause an active schedule or resume a paused one.

        A resumed auto-pay schedule whose first invoice was never paid returns to PENDING.

        Raises:
            ValidationError: If the schedule is cancelled
        """
        schedule = await self.get_recurring_invoice(recurring_invoice_id)
        previous = schedule.status
        if previous == RecurringStatus.CANCELLED:
            raise ValidationError("Cancelled schedules cannot be paused or resumed", code=ErrorCode.INVALID_STATE_TRANSITION)

        if previous == RecurringStatus.PAUSED:
            awaiting_first_payment = schedule.auto_pay and schedule.send_first_now and schedule.first_paid_at is None
            schedule.status = RecurringStatus.PENDING if awaiting_first_payment else RecurringStatus.ACTIVE
        else:
            schedule.status = RecurringStatus.PAUSED

        await self.db.commit()
        logger.info(
            "recurring_invoice_status_changed",
            recurring_invoice_id=str(schedule.id),
            previous_status=previous.value,
            status=schedule.status.value,
        )
        return schedule

    async def cancel_recurring_invoice(self, recurring_invoice_id: UUID) -> RecurringInvoice:
        """Cancel a schedule permanently. Already issued invoices are kept."""
        schedule = await self.get_recurring_invoice(recurring_invoice_id)
        if schedule.status != RecurringStatus.CANCELLED:
            previous = schedule.status
            schedule.status = RecurringStatus.CANCELLED
            await self.db.commit()
            logger.info(
                "recurring_invoice_cancelled", recurring_invoice_id=str(schedule.id), previous_status=previous.value
            )
        return schedule

    async def delete_recurring_invoice(self, recurring_invoice_id: UUID) -> None:
        """Delete a schedule. Generated invoices stay and lose their parent link."""
        schedule = await self.get_recurring_invoice(recurring_invoice_id)
        await self.db.delete(schedule)
        await self.db.commit()
        logger.info("recurring_invoice_deleted", recurring_invoice_id=str(recurring_invoice_id))

    async def process_due_recurring_invoices(self, now: datetime | None = None) -> dict[str, Any]:
        """
        Issue invoices for every ACTIVE schedule whose next_send_date has passed.

        Each schedule is handled in its own transaction. A failure is rolled back,
        recorded and does not stop the remaining schedules. Re-running is safe: an
        invoice already issued for a schedule's period is reused instead of duplicated.

        Returns:
            Dict with processed count and a list of {id, error} failures
        """
        now = now or datetime.utcnow()
        result = await self.db.execute(
            select(RecurringInvoice.id)
            .where(RecurringInvoice.status == RecurringStatus.ACTIVE, RecurringInvoice.next_send_date <= now)
            .order_by(RecurringInvoice.next_send_date)
        )
        due_ids = list(result.scalars().all())
        # Release the read transaction before per-schedule work.
        await self.db.commit()

        metrics.recurring_schedules_due_gauge.set(len(due_ids))
        logger.info("recurring_sweep_started", due_count=len(due_ids), now=now.isoformat())

        processed = 0
        errors: list[dict[str, str]] = []
        for schedule_id in due_ids:
            try:
                schedule = await self._lock_due_schedule(schedule_id, now)
                if schedule is None:
                    logger.info("recurring_schedule_skipped", recurring_invoice_id=str(schedule_id))
                    continue
                await self._process_schedule(schedule, now)
                processed += 1
            except Exception as e:
                await self.db.rollback()
                errors.append({"id": str(schedule_id), "error": str(e)})
                metrics.recurring_sweep_errors_total.inc()
                logger.exception("recurring_schedule_failed", recurring_invoice_id=str(schedule_id), error=str(e))

        logger.info("recurring_sweep_completed", processed=processed, errors=len(errors))
        return {"processed": processed, "errors": errors}

    async def _lock_due_schedule(self, schedule_id: UUID, now: datetime) -> RecurringInvoice | None:
        """Lock one schedule if it is still due; None when another sweep owns or advanced it."""
        result = await self.db.execute(
            select(RecurringInvoice)
            .where(
                RecurringInvoice.id == schedule_id,
                RecurringInvoice.status == RecurringStatus.ACTIVE,
                RecurringInvoice.next_send_date <= now,
            )
            .with_for_update(skip_locked=True)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _process_schedule(self, schedule: RecurringInvoice, now: datetime) -> Invoice:
        user = await self.db.get(User, schedule.user_id)
        client = await self.db.get(Client, schedule.client_id)
        if not user or not client:
            raise NotFoundError(f"Client or user missing for recurring invoice {schedule.id}")

        # Computed first so an invalid rule fails before an invoice exists.
        next_send_date = get_next_occurrence(now, schedule.interval, schedule.day_of_month, schedule.day_of_week)

        # The invoice and the advance commit together, so the row lock is held until both are stored.
        invoice, created = await self._issue_invoice(schedule, user, period_start=schedule.next_send_date)
        schedule.next_send_date = next_send_date
        schedule.last_sent_at = now
        await self.db.commit()

        logger.info(
            "recurring_invoice_processed",
            recurring_invoice_id=str(schedule.id),
            invoice_id=str(invoice.id),
            invoice_created=created,
            next_send_date=next_send_date.isoformat(),
        )
        await self._after_issue(invoice, schedule, user, created=created)
        return invoice

    async def _after_issue(self, invoice: Invoice, schedule: RecurringInvoice, user: User, created: bool) -> None:
        """Deliver a committed period invoice and start auto-pay when it still needs a charge."""
        if created:
            metrics.invoices_created_total.labels(status=invoice.status.value, currency=invoice.currency).inc()
            metrics.recurring_invoices_generated_total.inc()
            await self.invoice_service.deliver_invoice(invoice, send_email=True)
        if schedule.auto_pay and await self._awaiting_charge(invoice, created):
            await self._collect_auto_pay(invoice, schedule, user)

    async def _awaiting_charge(self, invoice: Invoice, created: bool) -> bool:
        if created:
            return True
        if invoice.status not in PAYABLE_STATUSES:
            return False
        attempts = (
            await self.db.execute(select(func.count()).select_from(Payment).where(Payment.invoice_id == invoice.id))
        ).scalar() or 0
        return attempts == 0

    async def _issue_invoice(
        self,
        schedule: RecurringInvoice,
        user: User,
        period_start: datetime,
        title: str | None = None,
        notes: str | None = None,
        items: list[InvoiceItemInput] | None = None,
    ) -> tuple[Invoice, bool]:
        """
        Add the invoice for one period, or return the one already issued for it.

        Nothing is committed here; the caller commits the invoice with the schedule change.
        """
        result = await self.db.execute(
            select(Invoice).where(
                Invoice.recurring_parent_id == schedule.id,
                Invoice.recurring_period_start == period_start,
            )
        )
        existing = result.scalar_one_or_none()
        if existing:
            logger.info(
                "recurring_invoice_already_issued",
                recurring_invoice_id=str(schedule.id),
                invoice_id=str(existing.id),
                period_start=period_start.isoformat(),
            )
            return existing, False

        invoice = await self.invoice_service.add_invoice(
            InvoiceCreate(
                user_id=user.id,
                client_id=schedule.client_id,
                title=title or schedule.title,
                notes=notes,
                status=InvoiceStatus.OPEN,
                currency=schedule.currency,
                issue_date=period_start,
                invoice_number=await self.invoice_service.generate_invoice_number(user.id, prefix="SUB"),
                items=items
                or [
                    InvoiceItemInput(
                        name=schedule.title,
                        quantity=1,
                        unit_price=Decimal(schedule.amount),
                        tax_rate=None,
                    )
                ],
                recurring=True,
                recurring_interval=RecurringInterval(schedule.interval),
                recurring_day_of_month=schedule.day_of_month,
                recurring_day_of_week=schedule.day_of_week,
                recurring_parent_id=schedule.id,
                recurring_period_start=period_start,
                send_email=True,
            )
        )
        return invoice, True

    async def _collect_auto_pay(self, invoice: Invoice, schedule: RecurringInvoice, user: User) -> None:
        """Charge the saved card; a failure notifies the user and leaves the invoice open."""
        try:
            await self.payment_service.charge_recurring_invoice(invoice, schedule)
        except Exception as e:
            logger.warning(
                "recurring_auto_pay_failed",
                recurring_invoice_id=str(schedule.id),
                invoice_id=str(invoice.id),
                error=str(e),
            )
            try:
                await self.notifier.send_recurring_payment_failed(schedule, invoice, user, str(e))
            except Exception as notify_error:
                logger.warning("recurring_auto_pay_notification_failed", error=str(notify_error))

    @staticmethod
    def _normalize_currency(currency: str | None) -> str:
        value = (currency or settings.default_currency).upper()
        if not validate_currency(value):
            raise ValidationError(f"Unsupported currency {value}", code=ErrorCode.INVALID_CURRENCY, field="currency")
        return value

"""Payment service for collecting, refunding and reconciling invoice payments."""
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Mapping, Optional
from uuid import UUID

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from invoicing import metrics
from invoicing.adapters.stripe_adapter import StripeAdapter
from invoicing.config import settings
from invoicing.exceptions import NotFoundError, ProviderError, ValidationError
from invoicing.integrations.notification_service import NotificationService
from invoicing.models.client import Client
from invoicing.models.invoice import PAYABLE_STATUSES, Invoice, InvoiceStatus
from invoicing.models.payment import Payment, PaymentProvider, PaymentStatus
from invoicing.models.recurring_invoice import RecurringInvoice
from invoicing.models.user import User
from invoicing.schemas.error import ErrorCode
from invoicing.services.invoice_service import InvoiceService
from invoicing.utils.currency import from_minor_units, quantize_money, to_minor_units

logger = structlog.get_logger(__name__)

ZERO = Decimal("0.00")

# API reason -> Stripe refund reason
REFUND_REASONS = {
    "duplicate": "duplicate",
    "fraud": "fraudulent",
    "fraudulent": "fraudulent",
    "requested_by_customer": "requested_by_customer",
}


def _parse_uuid(value: Any) -> Optional[UUID]:
    if not value:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None


class PaymentService:
    """Service for payment collection and the payment side of reconciliation."""

    def __init__(
        self,
        db: AsyncSession,
        stripe_adapter: StripeAdapter | None = None,
        notifier: NotificationService | None = None,
    ):
        """Initialize payment service."""
        self.db = db
        self.stripe = stripe_adapter or StripeAdapter()
        self.notifier = notifier or NotificationService()
        self.invoice_service = InvoiceService(db, notifier=self.notifier)

    async def list_payments(
        self,
        invoice_id: Optional[UUID] = None,
        status: Optional[PaymentStatus] = None,
        page: int = 1,
        page_size: int = 100,
    ) -> tuple[List[Payment], int]:
        """
        List payments with optional filters.

        Args:
            invoice_id: Filter by invoice ID
            status: Filter by payment status
            page: Page number
            page_size: Results per page

        Returns:
            Tuple of (payments, total_count)
        """
        filters = []
        if invoice_id:
            filters.append(Payment.invoice_id == invoice_id)
        if status:
            filters.append(Payment.status == status)

        query = select(Payment)
        count_query = select(func.count()).select_from(Payment)
        if filters:
            query = query.where(*filters)
            count_query = count_query.where(*filters)

        total = (await self.db.execute(count_query)).scalar() or 0
        result = await self.db.execute(
            query.order_by(Payment.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total

    async def get_payment(self, payment_id: UUID) -> Payment:
        """
        Get payment by ID.

        Raises:
            NotFoundError: If payment not found
        """
        payment = await self.db.get(Payment, payment_id)
        if not payment:
            raise NotFoundError(f"Payment {payment_id} not found", code=ErrorCode.PAYMENT_NOT_FOUND)
        return payment

    # Lookups used by webhook reconciliation. They return None rather than raising.

    async def find_by_payment_intent(self, payment_intent_id: Optional[str]) -> Optional[Payment]:
        if not payment_intent_id:
            return None
        result = await self.db.execute(select(Payment).where(Payment.stripe_payment_intent_id == payment_intent_id))
        return result.scalar_one_or_none()

    async def find_by_charge(self, charge_id: Optional[str]) -> Optional[Payment]:
        if not charge_id:
            return None
        result = await self.db.execute(
            select(Payment).where(Payment.stripe_charge_id == charge_id).order_by(Payment.created_at.desc()).limit(1)
        )
        return result.scalar_one_or_none()

    async def find_by_checkout_session(self, session_id: Optional[str]) -> Optional[Payment]:
        if not session_id:
            return None
        result = await self.db.execute(select(Payment).where(Payment.stripe_checkout_session_id == session_id))
        return result.scalar_one_or_none()

    async def find_by_metadata(self, metadata: Optional[Mapping[str, Any]]) -> Optional[Payment]:
        payment_id = _parse_uuid((metadata or {}).get("paymentId"))
        if not payment_id:
            return None
        return await self.db.get(Payment, payment_id)

    async def update_payment_and_reconcile(self, payment: Payment, **changes: Any) -> Invoice | None:
        """
        Apply changes to a payment, recompute its invoice and commit both together.

        Returns:
            The reconciled invoice
        """
        for field, value in changes.items():
            setattr(payment, field, value)
        await self.db.flush()
        invoice = await self.invoice_service.reconcile_invoice_status(payment.invoice_id)
        await self.db.commit()
        return invoice

    def apply_authoritative_refund(self, payment: Payment, charge: Mapping[str, Any]) -> Decimal:
        """
        Set refund state from the provider's cumulative amount_refunded for a charge.

        The stored refunded amount never decreases and never exceeds the payment amount,
        so replayed or reordered refund events converge on the same state.

        Returns:
            The refunded amount now stored on the payment
        """
        currency = charge.get("currency") or payment.currency
        authoritative = from_minor_units(charge.get("amount_refunded") or 0, currency)
        stored = quantize_money(payment.refunded_amount or ZERO)
        amount = quantize_money(payment.amount)

        if authoritative < stored:
            logger.warning(
                "stripe_refund_total_below_recorded",
                payment_id=str(payment.id),
                recorded=str(stored),
                provider=str(authoritative),
            )

        refunded = min(amount, max(stored, authoritative))
        payment.refunded_amount = refunded
        if refunded >= amount:
            payment.status = PaymentStatus.REFUNDED
        elif refunded > 0:
            payment.status = PaymentStatus.PARTIALLY_REFUNDED

        if not payment.stripe_charge_id and charge.get("id"):
            payment.stripe_charge_id = charge["id"]
        if not payment.stripe_balance_transaction_id and charge.get("balance_transaction"):
            payment.stripe_balance_transaction_id = charge["balance_transaction"]
        return refunded

    async def create_checkout_session(
        self,
        invoice_id: UUID,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Start a hosted checkout for the outstanding balance of an invoice.

        A pending payment is recorded before calling Stripe. If Stripe rejects the session
        the payment is marked failed with the provider message.

        Returns:
            Dict with payment_id, session_id and url

        Raises:
            NotFoundError: If invoice not found
            ValidationError: If the invoice is not payable or has no balance
            ProviderError: If Stripe rejects the session
        """
        invoice = await self.invoice_service.get_invoice(invoice_id)
        if invoice.status not in PAYABLE_STATUSES:
            raise ValidationError(
                f"Invoice in status {invoice.status.value} cannot be paid", code=ErrorCode.INVOICE_NOT_PAYABLE
            )

        amounts = await self.invoice_service.compute_invoice_paid_amounts(invoice.id)
        amount_due = quantize_money(invoice.total) - amounts.paid
        if amount_due <= 0:
            raise ValidationError("Invoice is already paid", code=ErrorCode.INVOICE_ALREADY_PAID)

        user = await self.db.get(User, invoice.user_id)
        client = await self.db.get(Client, invoice.client_id)

        payment = Payment(
            invoice_id=invoice.id,
            client_id=invoice.client_id,
            provider=PaymentProvider.STRIPE,
            status=PaymentStatus.PENDING,
            amount=amount_due,
            currency=invoice.currency,
            refunded_amount=ZERO,
        )
        self.db.add(payment)
        await self.db.commit()

        base_url = f"{settings.app_url.rstrip('/')}/invoices/{invoice.id}"
        try:
            session = await self.stripe.create_checkout_session(
                amount=to_minor_units(amount_due, invoice.currency),
                currency=invoice.currency,
                product_name=f"Invoice {invoice.invoice_number}",
                success_url=success_url or f"{base_url}?payment=success",
                cancel_url=cancel_url or f"{base_url}?payment=cancelled",
                metadata={"invoiceId": str(invoice.id), "paymentId": str(payment.id)},
                customer_email=client.email if client else None,
                stripe_account=user.stripe_account_id if user else None,
            )
        except ProviderError as e:
            metrics.checkout_sessions_total.labels(outcome="failed").inc()
            await self.update_payment_and_reconcile(payment, status=PaymentStatus.FAILED, last_error=e.message)
            raise

        payment.stripe_checkout_session_id = session["id"]
        if session.get("payment_intent"):
            payment.stripe_payment_intent_id = session["payment_intent"]
        await self.db.commit()

        metrics.checkout_sessions_total.labels(outcome="created").inc()
        logger.info(
            "checkout_session_created",
            invoice_id=str(invoice.id),
            payment_id=str(payment.id),
            session_id=session["id"],
            amount=str(amount_due),
        )
        return {"payment_id": payment.id, "session_id": session["id"], "url": session.get("url")}

    async def refund_invoice(
        self,
        invoice_id: UUID,
        amount: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> tuple[dict[str, Any], Payment]:
        """
        Refund the most recent refundable Stripe payment of an invoice.

        Args:
            invoice_id: Invoice UUID
            amount: Amount in minor units; defaults to the remaining refundable balance
            reason: duplicate, fraud or requested_by_customer

        Returns:
            Tuple of (refund details, updated payment)

        Raises:
            ValidationError: If nothing can be refunded or amount exceeds the balance
            ProviderError: If Stripe rejects the refund
        """
        invoice = await self.invoice_service.get_invoice(invoice_id)
        result = await self.db.execute(
            select(Payment)
            .where(
                Payment.invoice_id == invoice.id,
                Payment.provider == PaymentProvider.STRIPE,
                Payment.status.in_([PaymentStatus.SUCCEEDED, PaymentStatus.PARTIALLY_REFUNDED]),
            )
            .order_by(Payment.created_at.desc())
        )
        payment = next(
            (p for p in result.scalars().all() if p.stripe_charge_id or p.stripe_payment_intent_id),
            None,
        )
        if not payment:
            raise ValidationError("No refundable payment found for this invoice", code=ErrorCode.NOTHING_TO_REFUND)

        remaining = quantize_money(payment.amount) - quantize_money(payment.refunded_amount or ZERO)
        remaining_minor = to_minor_units(remaining, payment.currency)
        refund_minor = amount or remaining_minor
        if refund_minor <= 0 or refund_minor > remaining_minor:
            raise ValidationError(
                f"Refund amount must be between 1 and {remaining_minor}",
                code=ErrorCode.INVALID_AMOUNT,
                field="amount",
            )

        user = await self.db.get(User, invoice.user_id)
        stripe_account = user.stripe_account_id if user else None
        try:
            refund = await self.stripe.create_refund(
                amount=refund_minor,
                charge_id=payment.stripe_charge_id,
                payment_intent_id=payment.stripe_payment_intent_id,
                reason=REFUND_REASONS.get(reason) if reason else None,
                metadata={"invoiceId": str(invoice.id), "paymentId": str(payment.id)},
                stripe_account=stripe_account,
            )
        except ProviderError:
            metrics.refunds_total.labels(outcome="failed").inc()
            raise

        charge_id = payment.stripe_charge_id or refund.get("charge")
        if charge_id:
            charge = await self.stripe.retrieve_charge(charge_id, stripe_account=stripe_account)
            self.apply_authoritative_refund(payment, charge)
            await self.update_payment_and_reconcile(payment)
        else:
            logger.warning("refund_charge_unknown", payment_id=str(payment.id), refund_id=refund["id"])

        metrics.refunds_total.labels(outcome="created").inc()
        logger.info(
            "refund_created",
            invoice_id=str(invoice.id),
            payment_id=str(payment.id),
            refund_id=refund["id"],
            amount=refund_minor,
        )
        return refund, payment

    async def record_manual_payment(
        self,
        invoice_id: UUID,
        amount: Optional[Decimal] = None,
        paid_at: Optional[datetime] = None,
    ) -> Invoice:
        """
        Record money received outside Stripe and reconcile the invoice.

        Args:
            invoice_id: Invoice UUID
            amount: Amount received; defaults to the outstanding balance
            paid_at: When the money arrived (defaults to now)

        Raises:
            ValidationError: If the invoice cannot take payments or amount exceeds the balance
        """
        invoice = await self.invoice_service.get_invoice(invoice_id)
        if invoice.status in (InvoiceStatus.DRAFT, InvoiceStatus.VOID):
            raise ValidationError(
                f"Invoice in status {invoice.status.value} cannot be paid", code=ErrorCode.INVOICE_NOT_PAYABLE
            )

        amounts = await self.invoice_service.compute_invoice_paid_amounts(invoice.id)
        amount_due = quantize_money(invoice.total) - amounts.paid
        value = quantize_money(amount) if amount is not None else amount_due
        if amount_due <= 0:
            raise ValidationError("Invoice is already paid", code=ErrorCode.INVOICE_ALREADY_PAID)
        if value <= 0 or value > amount_due:
            raise ValidationError(
                f"Amount must be between 0.01 and {amount_due}", code=ErrorCode.INVALID_AMOUNT, field="amount"
            )

        payment = Payment(
            invoice_id=invoice.id,
            client_id=invoice.client_id,
            provider=PaymentProvider.MANUAL,
            status=PaymentStatus.SUCCEEDED,
            amount=value,
            currency=invoice.currency,
            refunded_amount=ZERO,
            paid_at=paid_at or datetime.utcnow(),
        )
        self.db.add(payment)
        await self.update_payment_and_reconcile(payment)

        logger.info("manual_payment_recorded", invoice_id=str(invoice.id), payment_id=str(payment.id), amount=str(value))
        return await self.invoice_service.get_invoice(invoice.id)

    async def charge_recurring_invoice(self, invoice: Invoice, schedule: RecurringInvoice) -> Payment:
        """
        Charge a schedule's saved payment method for a generated invoice.

        The payment stays pending until the payment_intent.succeeded webhook settles it.

        Raises:
            ValidationError: If the schedule has no saved payment method
            ProviderError: If the charge is declined; the payment is recorded as failed
        """
        if not schedule.stripe_customer_id or not schedule.stripe_payment_method_id:
            raise ValidationError("Auto-pay requires a saved Stripe customer and payment method")

        user = await self.db.get(User, schedule.user_id)
        payment = Payment(
            invoice_id=invoice.id,
            client_id=invoice.client_id,
            provider=PaymentProvider.STRIPE,
            status=PaymentStatus.PENDING,
            amount=quantize_money(invoice.total),
            currency=invoice.currency,
            refunded_amount=ZERO,
            stripe_customer_id=schedule.stripe_customer_id,
        )
        self.db.add(payment)
        await self.db.commit()

        try:
            intent = await self.stripe.create_payment_intent(
                amount=to_minor_units(invoice.total, invoice.currency),
                currency=invoice.currency,
                customer_id=schedule.stripe_customer_id,
                payment_method_id=schedule.stripe_payment_method_id,
                idempotency_key=f"recurring-invoice-{invoice.id}",
                metadata={
                    "invoiceId": str(invoice.id),
                    "paymentId": str(payment.id),
                    "recurringInvoiceId": str(schedule.id),
                },
                stripe_account=user.stripe_account_id if user else None,
            )
        except ProviderError as e:
            await self.update_payment_and_reconcile(payment, status=PaymentStatus.FAILED, last_error=e.message)
            raise

        payment.stripe_payment_intent_id = intent["id"]
        await self.db.commit()
        logger.info(
            "recurring_payment_initiated",
            invoice_id=str(invoice.id),
            payment_id=str(payment.id),
            payment_intent_id=intent["id"],
            intent_status=intent.get("status"),
        )
        return payment

"""Reconcile Stripe webhook events into payment and invoice state.

Stripe delivers events at least once and in no guaranteed order. Every branch writes
absolute values ("set status to X", "refunded = provider's cumulative total"), so a
redelivered or reordered event converges on the same state.
"""
from datetime import datetime
from typing import Any, Awaitable, Callable, Mapping, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from invoicing import metrics
from invoicing.adapters.stripe_adapter import StripeAdapter, stripe_object_id
from invoicing.exceptions import ProviderError
from invoicing.integrations.notification_service import NotificationService
from invoicing.models.invoice import Invoice
from invoicing.models.payment import REFUND_STATUSES, SETTLED_STATUSES, Payment, PaymentStatus
from invoicing.models.user import User
from invoicing.services.payment_service import PaymentService
from invoicing.utils.currency import from_minor_units

logger = structlog.get_logger(__name__)

StripeObject = Mapping[str, Any]


class StripeWebhookService:
    """Applies verified Stripe events to persisted payments."""

    def __init__(
        self,
        db: AsyncSession,
        stripe_adapter: StripeAdapter | None = None,
        notifier: NotificationService | None = None,
    ):
        self.db = db
        self.stripe = stripe_adapter or StripeAdapter()
        self.notifier = notifier or NotificationService()
        self.payments = PaymentService(db, stripe_adapter=self.stripe, notifier=self.notifier)
        self._handlers: dict[str, Callable[[StripeObject, StripeObject], Awaitable[Optional[Payment]]]] = {
            "checkout.session.completed": self._handle_checkout_completed,
            "payment_intent.succeeded": self._handle_payment_succeeded,
            "payment_intent.payment_failed": self._handle_payment_failed,
            "checkout.session.async_payment_failed": self._handle_payment_failed,
            "payment_intent.canceled": self._handle_payment_canceled,
            "checkout.session.expired": self._handle_payment_canceled,
            "charge.refunded": self._handle_refund,
            "refund.updated": self._handle_refund,
            "charge.refund.updated": self._handle_refund,
        }

    async def handle_event(self, event: StripeObject) -> dict[str, Any]:
        """
        Dispatch one Stripe event.

        Events that match no payment are logged and dropped.

        Args:
            event: Verified event envelope

        Returns:
            Dict with event_type, handled flag and the affected payment id

        Raises:
            ProviderError: If the authoritative charge for a refund cannot be fetched
        """
        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object") or {}

        logger.info(
            "stripe_webhook_received",
            event_type=event_type,
            event_id=event.get("id"),
            object_id=obj.get("id"),
            account=event.get("account"),
        )

        handler = self._handlers.get(event_type)
        if handler is None:
            logger.info("stripe_webhook_unhandled_event", event_type=event_type)
            metrics.webhook_events_total.labels(event_type=event_type or "unknown", outcome="ignored").inc()
            return {"event_type": event_type, "handled": False, "payment_id": None}

        try:
            payment = await handler(event, obj)
        except Exception:
            metrics.webhook_events_total.labels(event_type=event_type, outcome="failed").inc()
            raise

        if payment is None:
            metrics.webhook_events_total.labels(event_type=event_type, outcome="unmatched").inc()
            return {"event_type": event_type, "handled": False, "payment_id": None}

        metrics.webhook_events_total.labels(event_type=event_type, outcome="applied").inc()
        metrics.payments_reconciled_total.labels(event_type=event_type, status=payment.status.value).inc()
        await self._notify_admin(event, obj, payment)
        return {"event_type": event_type, "handled": True, "payment_id": str(payment.id)}

    async def _handle_checkout_completed(self, event: StripeObject, session: StripeObject) -> Optional[Payment]:
        payment = await self.payments.find_by_checkout_session(session.get("id"))
        if not payment:
            logger.info("stripe_webhook_payment_not_found", event_type=event.get("type"), session_id=session.get("id"))
            return None

        payment_intent_id = stripe_object_id(session.get("payment_intent"))
        if not payment_intent_id:
            logger.info("stripe_checkout_without_payment_intent", payment_id=str(payment.id))
            return None

        changes: dict[str, Any] = {}
        if payment.stripe_payment_intent_id != payment_intent_id:
            changes["stripe_payment_intent_id"] = payment_intent_id
        customer_id = stripe_object_id(session.get("customer"))
        if customer_id:
            changes["stripe_customer_id"] = customer_id

        await self.payments.update_payment_and_reconcile(payment, **changes)
        logger.info("stripe_checkout_completed", payment_id=str(payment.id), payment_intent_id=payment_intent_id)
        return payment

    async def _handle_payment_succeeded(self, event: StripeObject, intent: StripeObject) -> Optional[Payment]:
        payment = await self._find_payment(intent)
        if not payment:
            logger.info("stripe_webhook_payment_not_found", event_type=event.get("type"), payment_intent_id=intent.get("id"))
            return None

        charge = _first_charge(intent)
        charge_id = stripe_object_id(charge)
        balance_transaction_id = stripe_object_id(charge.get("balance_transaction")) if isinstance(charge, Mapping) else None

        changes: dict[str, Any] = {}
        if not payment.stripe_payment_intent_id and intent.get("id"):
            changes["stripe_payment_intent_id"] = intent["id"]
        if charge_id:
            changes["stripe_charge_id"] = charge_id
        if balance_transaction_id:
            changes["stripe_balance_transaction_id"] = balance_transaction_id
        customer_id = stripe_object_id(intent.get("customer"))
        if customer_id:
            changes["stripe_customer_id"] = customer_id

        if payment.status in REFUND_STATUSES:
            logger.info("stripe_webhook_stale_event_ignored", payment_id=str(payment.id), status=payment.status.value)
        else:
            changes["status"] = PaymentStatus.SUCCEEDED
            changes["paid_at"] = payment.paid_at or datetime.utcnow()
            changes["last_error"] = None

        if balance_transaction_id and payment.fee_amount is None:
            changes.update(await self._fetch_fees(event, payment, balance_transaction_id))

        await self.payments.update_payment_and_reconcile(payment, **changes)
        logger.info("stripe_payment_succeeded", payment_id=str(payment.id), charge_id=charge_id)
        return payment

    async def _handle_payment_failed(self, event: StripeObject, obj: StripeObject) -> Optional[Payment]:
        payment = await self._find_payment(obj)
        if not payment:
            logger.info("stripe_webhook_payment_not_found", event_type=event.get("type"), object_id=obj.get("id"))
            return None
        if payment.status in SETTLED_STATUSES:
            logger.info("stripe_webhook_stale_event_ignored", payment_id=str(payment.id), status=payment.status.value)
            return None

        reason = _failure_reason(obj)
        await self.payments.update_payment_and_reconcile(payment, status=PaymentStatus.FAILED, last_error=reason)
        logger.info("stripe_payment_failed", payment_id=str(payment.id), reason=reason)
        return payment

    async def _handle_payment_canceled(self, event: StripeObject, obj: StripeObject) -> Optional[Payment]:
        payment = await self._find_payment(obj)
        if not payment:
            logger.info("stripe_webhook_payment_not_found", event_type=event.get("type"), object_id=obj.get("id"))
            return None
        if payment.status in SETTLED_STATUSES:
            logger.info("stripe_webhook_stale_event_ignored", payment_id=str(payment.id), status=payment.status.value)
            return None

        await self.payments.update_payment_and_reconcile(payment, status=PaymentStatus.CANCELED)
        logger.info("stripe_payment_canceled", payment_id=str(payment.id))
        return payment

    async def _handle_refund(self, event: StripeObject, obj: StripeObject) -> Optional[Payment]:
        if obj.get("object") == "charge":
            charge_id = obj.get("id")
        else:
            charge_id = stripe_object_id(obj.get("charge"))
        payment_intent_id = stripe_object_id(obj.get("payment_intent"))

        payment = (
            await self.payments.find_by_charge(charge_id)
            or await self.payments.find_by_payment_intent(payment_intent_id)
            or await self.payments.find_by_metadata(obj.get("metadata"))
        )

        charge_id = charge_id or (payment.stripe_charge_id if payment else None)
        if not charge_id:
            logger.info("stripe_refund_without_charge", event_type=event.get("type"), object_id=obj.get("id"))
            return None

        stripe_account = event.get("account") or await self._connected_account(payment)
        # Refund events are cumulative per charge; always read the provider's running total.
        try:
            charge = await self.stripe.retrieve_charge(charge_id, stripe_account=stripe_account)
        except ProviderError:
            if payment:
                raise
            logger.info("stripe_webhook_payment_not_found", event_type=event.get("type"), charge_id=charge_id)
            return None

        if not payment:
            payment = await self.payments.find_by_payment_intent(charge.get("payment_intent")) or (
                await self.payments.find_by_metadata(charge.get("metadata"))
            )
        if not payment:
            logger.info("stripe_webhook_payment_not_found", event_type=event.get("type"), charge_id=charge_id)
            return None

        refunded = self.payments.apply_authoritative_refund(payment, charge)
        await self.payments.update_payment_and_reconcile(payment)
        logger.info(
            "stripe_refund_reconciled",
            payment_id=str(payment.id),
            charge_id=charge_id,
            refunded_amount=str(refunded),
            status=payment.status.value,
        )
        return payment

    async def _find_payment(self, obj: StripeObject) -> Optional[Payment]:
        """Resolve a payment from a payment intent or checkout session object."""
        if obj.get("object") == "checkout.session":
            payment = await self.payments.find_by_checkout_session(obj.get("id")) or (
                await self.payments.find_by_payment_intent(stripe_object_id(obj.get("payment_intent")))
            )
        else:
            payment = await self.payments.find_by_payment_intent(obj.get("id"))
        return payment or await self.payments.find_by_metadata(obj.get("metadata"))

    async def _connected_account(self, payment: Optional[Payment]) -> Optional[str]:
        if not payment:
            return None
        invoice = await self.db.get(Invoice, payment.invoice_id)
        if not invoice:
            return None
        user = await self.db.get(User, invoice.user_id)
        return user.stripe_account_id if user else None

    async def _fetch_fees(self, event: StripeObject, payment: Payment, balance_transaction_id: str) -> dict[str, Any]:
        try:
            txn = await self.stripe.retrieve_balance_transaction(
                balance_transaction_id, stripe_account=event.get("account")
            )
        except ProviderError as e:
            logger.warning("stripe_balance_transaction_unavailable", payment_id=str(payment.id), error=str(e))
            return {}
        currency = txn.get("currency") or payment.currency
        return {
            "fee_amount": from_minor_units(txn.get("fee") or 0, currency),
            "net_amount": from_minor_units(txn.get("net") or 0, currency),
        }

    async def _notify_admin(self, event: StripeObject, obj: StripeObject, payment: Payment) -> None:
        lines = [
            f"Event ID: {event.get('id')}",
            f"Object: {obj.get('id')} ({obj.get('object')})",
            f"Payment ID: {payment.id}",
            f"Invoice ID: {payment.invoice_id}",
            f"Status: {payment.status.value}",
        ]
        try:
            await self.notifier.send_admin_notification(f"Stripe {event.get('type')}", lines)
        except Exception as e:
            logger.warning("stripe_admin_notification_failed", event_id=event.get("id"), error=str(e))


def _first_charge(intent: StripeObject) -> Any:
    charges = (intent.get("charges") or {}).get("data") or []
    if charges:
        return charges[0]
    return intent.get("latest_charge")


def _failure_reason(obj: StripeObject) -> str:
    error = obj.get("last_payment_error") or {}
    if error.get("message"):
        return error["message"]
    latest_charge = obj.get("latest_charge")
    if isinstance(latest_charge, Mapping) and latest_charge.get("failure_message"):
        return latest_charge["failure_message"]
    return "Payment failed"

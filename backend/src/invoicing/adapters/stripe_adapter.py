"""Stripe payment gateway adapter."""
import json
from typing import Any

import stripe
import structlog

from invoicing.config import settings
from invoicing.exceptions import ProviderError

logger = structlog.get_logger(__name__)


def stripe_object_id(value: Any) -> str | None:
    """Return the id of a Stripe reference that may be a bare id or an expanded object."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return value.get("id") if hasattr(value, "get") else getattr(value, "id", None)


def _account_params(stripe_account: str | None) -> dict[str, Any]:
    return {"stripe_account": stripe_account} if stripe_account else {}


class StripeAdapter:
    """Adapter for Stripe payment gateway integration.

    Every method returns plain dicts and raises ProviderError when Stripe rejects the call.
    """

    def __init__(self):
        """Initialize Stripe adapter with API key."""
        stripe.api_key = settings.stripe_secret_key

    async def create_checkout_session(
        self,
        amount: int,
        currency: str,
        product_name: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
        customer_email: str | None = None,
        stripe_account: str | None = None,
    ) -> dict[str, Any]:
        """
        Create a hosted Checkout Session for a one-off invoice payment.

        Args:
            amount: Amount in minor units
            currency: ISO currency code
            product_name: Line shown on the checkout page
            success_url: Redirect after payment
            cancel_url: Redirect when the client abandons checkout
            metadata: Copied onto the session and the resulting payment intent
            customer_email: Prefills the checkout email field
            stripe_account: Connected account that receives the funds

        Returns:
            Session id, hosted URL and payment intent id (when already created)

        Raises:
            ProviderError: If Stripe rejects the request
        """
        params: dict[str, Any] = {
            "mode": "payment",
            "line_items": [
                {
                    "quantity": 1,
                    "price_data": {
                        "currency": currency.lower(),
                        "unit_amount": amount,
                        "product_data": {"name": product_name},
                    },
                }
            ],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
            "payment_intent_data": {"metadata": metadata},
            **_account_params(stripe_account),
        }
        if customer_email:
            params["customer_email"] = customer_email

        try:
            session = stripe.checkout.Session.create(**params)
        except stripe.StripeError as e:
            logger.warning("stripe_checkout_session_failed", error=str(e), metadata=metadata)
            raise ProviderError(e.user_message or str(e)) from e

        return {
            "id": session.id,
            "url": session.url,
            "payment_intent": stripe_object_id(session.get("payment_intent")),
        }

    async def create_payment_intent(
        self,
        amount: int,
        currency: str,
        customer_id: str,
        payment_method_id: str,
        idempotency_key: str | None = None,
        metadata: dict[str, str] | None = None,
        stripe_account: str | None = None,
    ) -> dict[str, Any]:
        """
        Charge a saved payment method off-session.

        Args:
            amount: Amount in minor units
            currency: ISO currency code
            customer_id: Stripe customer ID
            payment_method_id: Saved Stripe payment method ID
            idempotency_key: Idempotency key for retries
            metadata: Additional metadata

        Returns:
            Payment intent details

        Raises:
            ProviderError: If the card is declined or Stripe rejects the request
        """
        params: dict[str, Any] = {
            "amount": amount,
            "currency": currency.lower(),
            "customer": customer_id,
            "payment_method": payment_method_id,
            "off_session": True,
            "confirm": True,
            "metadata": metadata or {},
            **_account_params(stripe_account),
        }
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        try:
            payment_intent = stripe.PaymentIntent.create(**params)
        except stripe.CardError as e:
            # Card was declined
            raise ProviderError(e.user_message or str(e), code="card_declined") from e
        except stripe.StripeError as e:
            raise ProviderError(str(e)) from e

        return {
            "id": payment_intent.id,
            "status": payment_intent.status,
            "amount": payment_intent.amount,
            "currency": payment_intent.currency,
        }

    async def retrieve_charge(self, charge_id: str, stripe_account: str | None = None) -> dict[str, Any]:
        """
        Retrieve the authoritative state of a charge.

        Args:
            charge_id: Stripe charge ID
            stripe_account: Connected account that owns the charge

        Returns:
            Charge id, amount, cumulative amount_refunded (minor units), currency,
            payment intent, balance transaction and metadata
        """
        try:
            charge = stripe.Charge.retrieve(charge_id, **_account_params(stripe_account))
        except stripe.StripeError as e:
            raise ProviderError(f"Could not retrieve charge {charge_id}: {e}") from e

        return {
            "id": charge.id,
            "amount": charge.amount,
            "amount_refunded": charge.amount_refunded,
            "currency": charge.currency,
            "payment_intent": stripe_object_id(charge.get("payment_intent")),
            "balance_transaction": stripe_object_id(charge.get("balance_transaction")),
            "metadata": dict(charge.get("metadata") or {}),
        }

    async def retrieve_balance_transaction(
        self, balance_transaction_id: str, stripe_account: str | None = None
    ) -> dict[str, Any]:
        """
        Retrieve fee and net amounts of a balance transaction.

        Returns:
            Dict with fee, net (minor units) and currency
        """
        try:
            txn = stripe.BalanceTransaction.retrieve(balance_transaction_id, **_account_params(stripe_account))
        except stripe.StripeError as e:
            raise ProviderError(f"Could not retrieve balance transaction {balance_transaction_id}: {e}") from e

        return {"id": txn.id, "fee": txn.fee, "net": txn.net, "currency": txn.currency}

    async def create_refund(
        self,
        amount: int,
        charge_id: str | None = None,
        payment_intent_id: str | None = None,
        reason: str | None = None,
        metadata: dict[str, str] | None = None,
        stripe_account: str | None = None,
    ) -> dict[str, Any]:
        """
        Refund part or all of a charge.

        Args:
            amount: Amount to refund in minor units
            charge_id: Charge to refund (preferred)
            payment_intent_id: Payment intent to refund when the charge is unknown
            reason: duplicate, fraudulent or requested_by_customer

        Returns:
            Refund id, status, amount and charge id

        Raises:
            ProviderError: If Stripe rejects the refund
        """
        params: dict[str, Any] = {"amount": amount, "metadata": metadata or {}, **_account_params(stripe_account)}
        if charge_id:
            params["charge"] = charge_id
        elif payment_intent_id:
            params["payment_intent"] = payment_intent_id
        else:
            raise ProviderError("Refund requires a charge or payment intent")
        if reason:
            params["reason"] = reason

        try:
            refund = stripe.Refund.create(**params)
        except stripe.StripeError as e:
            logger.warning("stripe_refund_failed", error=str(e), charge_id=charge_id)
            raise ProviderError(e.user_message or str(e)) from e

        return {
            "id": refund.id,
            "status": refund.status,
            "amount": refund.amount,
            "charge": stripe_object_id(refund.get("charge")),
        }

    async def construct_webhook_event(self, payload: bytes, signature: str) -> dict[str, Any]:
        """
        Verify a webhook signature and decode the event.

        Args:
            payload: Raw request body
            signature: Value of the stripe-signature header

        Returns:
            Event as a plain dict

        Raises:
            ValueError: If the payload or signature is invalid
        """
        try:
            stripe.Webhook.construct_event(payload, signature, settings.stripe_webhook_secret)
        except ValueError as e:
            raise ValueError(f"Invalid payload: {e}") from e
        except stripe.SignatureVerificationError as e:
            raise ValueError(f"Invalid signature: {e}") from e

        return json.loads(payload)

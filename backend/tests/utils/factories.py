"""Test data factories using Faker for generating realistic test data."""
import time
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any
from uuid import uuid4

from faker import Faker

fake = Faker()


class UserFactory:
    """Factory for creating issuing user data."""

    @staticmethod
    def create(overrides: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        Create user test data.

        Args:
            overrides: Optional field overrides

        Returns:
            dict: User column values
        """
        data = {
            "id": uuid4(),
            "email": fake.unique.email(),
            "name": fake.name(),
            "company_name": fake.company(),
            "stripe_account_id": None,
        }
        if overrides:
            data.update(overrides)
        return data


class ClientFactory:
    """Factory for creating invoiced client data."""

    @staticmethod
    def create(overrides: dict[str, Any] | None = None) -> dict[str, Any]:
        data = {
            "id": uuid4(),
            "name": fake.name(),
            "company_name": fake.company(),
            "email": fake.unique.email(),
        }
        if overrides:
            data.update(overrides)
        return data


class InvoiceItemFactory:
    """Factory for line item payloads."""

    @staticmethod
    def create(overrides: dict[str, Any] | None = None) -> dict[str, Any]:
        data = {
            "name": fake.bs().capitalize(),
            "description": fake.sentence(),
            "quantity": fake.random_int(min=1, max=10),
            "unit_price": Decimal(f"{fake.random_int(min=100, max=50000) / 100:.2f}"),
            "tax_rate": None,
        }
        if overrides:
            data.update(overrides)
        return data


class InvoiceFactory:
    """Factory for invoice creation payloads (InvoiceCreate fields)."""

    @staticmethod
    def create(overrides: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        Create invoice payload data.

        Args:
            overrides: Optional field overrides (user_id and client_id are usually supplied here)

        Returns:
            dict: InvoiceCreate keyword arguments
        """
        data = {
            "title": fake.catch_phrase(),
            "notes": fake.sentence(),
            "currency": "USD",
            "issue_date": datetime.utcnow(),
            "due_date": datetime.utcnow() + timedelta(days=30),
            "items": [InvoiceItemFactory.create()],
        }
        if overrides:
            data.update(overrides)
        return data


class RecurringInvoiceFactory:
    """Factory for recurring schedule payloads (RecurringInvoiceCreate fields)."""

    @staticmethod
    def create(overrides: dict[str, Any] | None = None) -> dict[str, Any]:
        data = {
            "title": f"{fake.word().title()} retainer",
            "amount": Decimal(f"{fake.random_int(min=1000, max=500000) / 100:.2f}"),
            "currency": "USD",
            "interval": "month",
            "day_of_month": None,
            "day_of_week": None,
        }
        if overrides:
            data.update(overrides)
        return data


class StripeEventFactory:
    """Builds Stripe webhook event envelopes the way Stripe delivers them."""

    @staticmethod
    def event(event_type: str, obj: dict[str, Any], account: str | None = None) -> dict[str, Any]:
        event = {
            "id": f"evt_{uuid4().hex[:24]}",
            "object": "event",
            "type": event_type,
            "created": int(time.time()),
            "livemode": False,
            "data": {"object": obj},
        }
        if account:
            event["account"] = account
        return event

    @staticmethod
    def payment_intent(
        payment_intent_id: str,
        amount: int,
        charge_id: str | None = None,
        metadata: dict[str, str] | None = None,
        failure_message: str | None = None,
    ) -> dict[str, Any]:
        obj: dict[str, Any] = {
            "id": payment_intent_id,
            "object": "payment_intent",
            "amount": amount,
            "currency": "usd",
            "metadata": metadata or {},
            "latest_charge": charge_id,
        }
        if failure_message:
            obj["last_payment_error"] = {"message": failure_message}
        return obj

    @staticmethod
    def checkout_session(
        session_id: str,
        payment_intent_id: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        return {
            "id": session_id,
            "object": "checkout.session",
            "payment_intent": payment_intent_id,
            "customer": f"cus_{uuid4().hex[:14]}",
            "metadata": metadata or {},
        }

    @staticmethod
    def charge(
        charge_id: str,
        amount: int,
        amount_refunded: int,
        payment_intent_id: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        return {
            "id": charge_id,
            "object": "charge",
            "amount": amount,
            "amount_refunded": amount_refunded,
            "currency": "usd",
            "payment_intent": payment_intent_id,
            "metadata": metadata or {},
        }

    @staticmethod
    def refund(refund_id: str, charge_id: str | None, amount: int, payment_intent_id: str | None = None) -> dict[str, Any]:
        return {
            "id": refund_id,
            "object": "refund",
            "amount": amount,
            "charge": charge_id,
            "payment_intent": payment_intent_id,
            "status": "succeeded",
            "metadata": {},
        }

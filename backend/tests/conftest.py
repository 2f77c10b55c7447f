"""Pytest configuration and fixtures for async testing."""
import os
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from invoicing.adapters.stripe_adapter import StripeAdapter
from invoicing.api.deps import get_db, get_notification_service, get_pdf_service, get_stripe_adapter
from invoicing.database import Base
from invoicing.exceptions import ProviderError
from invoicing.integrations.notification_service import NotificationService
from invoicing.main import app
from invoicing.models import Client, User
from invoicing.services.invoice_pdf_service import InvoicePDFService
from utils.factories import ClientFactory, UserFactory

# In-memory SQLite by default; point at Postgres to exercise FOR UPDATE SKIP LOCKED
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite://")


class FakeStripeAdapter(StripeAdapter):
    """
    In-memory Stripe used by tests.

    Charges live in `charges` keyed by charge id and follow Stripe's shape
    (minor units, cumulative amount_refunded). Put a ProviderError in
    `failures[method_name]` to make that call fail.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.charges: dict[str, dict[str, Any]] = {}
        self.balance_transactions: dict[str, dict[str, Any]] = {}
        self.failures: dict[str, ProviderError] = {}
        self._sequence = 0

    def _record(self, method: str, **kwargs: Any) -> int:
        self.calls.append((method, kwargs))
        if method in self.failures:
            raise self.failures[method]
        self._sequence += 1
        return self._sequence

    def calls_to(self, method: str) -> list[dict[str, Any]]:
        return [kwargs for name, kwargs in self.calls if name == method]

    def add_charge(
        self,
        charge_id: str,
        amount: int,
        amount_refunded: int = 0,
        payment_intent: str | None = None,
        metadata: dict[str, str] | None = None,
        currency: str = "usd",
    ) -> dict[str, Any]:
        self.charges[charge_id] = {
            "id": charge_id,
            "amount": amount,
            "amount_refunded": amount_refunded,
            "currency": currency,
            "payment_intent": payment_intent,
            "balance_transaction": None,
            "metadata": metadata or {},
        }
        return self.charges[charge_id]

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
        n = self._record(
            "create_checkout_session",
            amount=amount,
            currency=currency,
            product_name=product_name,
            metadata=metadata,
            customer_email=customer_email,
            stripe_account=stripe_account,
        )
        return {"id": f"cs_test_{n}", "url": f"https://checkout.stripe.com/c/pay/cs_test_{n}", "payment_intent": None}

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
        n = self._record(
            "create_payment_intent",
            amount=amount,
            currency=currency,
            customer_id=customer_id,
            payment_method_id=payment_method_id,
            idempotency_key=idempotency_key,
            metadata=metadata,
        )
        return {"id": f"pi_test_{n}", "status": "processing", "amount": amount, "currency": currency.lower()}

    async def retrieve_charge(self, charge_id: str, stripe_account: str | None = None) -> dict[str, Any]:
        self._record("retrieve_charge", charge_id=charge_id, stripe_account=stripe_account)
        if charge_id not in self.charges:
            raise ProviderError(f"Could not retrieve charge {charge_id}: No such charge")
        return dict(self.charges[charge_id])

    async def retrieve_balance_transaction(
        self, balance_transaction_id: str, stripe_account: str | None = None
    ) -> dict[str, Any]:
        self._record("retrieve_balance_transaction", balance_transaction_id=balance_transaction_id)
        if balance_transaction_id not in self.balance_transactions:
            raise ProviderError(f"Could not retrieve balance transaction {balance_transaction_id}")
        return dict(self.balance_transactions[balance_transaction_id])

    async def create_refund(
        self,
        amount: int,
        charge_id: str | None = None,
        payment_intent_id: str | None = None,
        reason: str | None = None,
        metadata: dict[str, str] | None = None,
        stripe_account: str | None = None,
    ) -> dict[str, Any]:
        n = self._record(
            "create_refund",
            amount=amount,
            charge_id=charge_id,
            payment_intent_id=payment_intent_id,
            reason=reason,
            metadata=metadata,
        )
        if charge_id in self.charges:
            self.charges[charge_id]["amount_refunded"] += amount
        return {"id": f"re_test_{n}", "status": "succeeded", "amount": amount, "charge": charge_id}


class FakeNotifier(NotificationService):
    """Records outgoing email instead of calling Resend. Set `fail` to simulate an outage."""

    def __init__(self) -> None:
        super().__init__(api_key="", sender="Invoices <invoices@test.example>")
        self.sent: list[dict[str, Any]] = []
        self.fail = False

    async def send_email(self, to: str, subject: str, html: str, kind: str = "generic") -> dict[str, Any]:
        if self.fail:
            raise ProviderError("Email delivery failed: service unavailable", provider="resend")
        if not to:
            return {"status": "skipped", "to": to}
        self.sent.append({"to": to, "subject": subject, "html": html, "kind": kind})
        return {"status": "sent", "to": to, "message_id": f"msg_{len(self.sent)}"}

    def sent_of(self, kind: str) -> list[dict[str, Any]]:
        return [message for message in self.sent if message["kind"] == kind]


class FakePDFService(InvoicePDFService):
    """Renders the real HTML template but skips WeasyPrint."""

    def __init__(self, storage_dir: str) -> None:
        super().__init__(storage_dir=storage_dir, base_url="https://files.test/invoices")
        self.rendered: list[Any] = []
        self.fail = False

    async def generate_pdf(self, invoice, client, user) -> bytes:
        if self.fail:
            raise ProviderError("PDF renderer is not available", provider="weasyprint")
        html = self.render_html(invoice, client, user)
        self.rendered.append(invoice.id)
        return b"%PDF-1.7\n" + html.encode("utf-8")


def _create_test_engine() -> AsyncEngine:
    if TEST_DATABASE_URL.startswith("sqlite"):
        return create_async_engine(
            TEST_DATABASE_URL,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_async_engine(TEST_DATABASE_URL, pool_pre_ping=True)


@pytest_asyncio.fixture(scope="function")
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Engine with a freshly created schema, dropped after the test."""
    engine = _create_test_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    """
    Create a fresh database session for each test.

    Yields:
        AsyncSession: Database session for testing
    """
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
def stripe_adapter() -> FakeStripeAdapter:
    return FakeStripeAdapter()


@pytest.fixture(scope="function")
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture(scope="function")
def pdf_service(tmp_path) -> FakePDFService:
    return FakePDFService(storage_dir=str(tmp_path / "invoices"))


@pytest_asyncio.fixture(scope="function")
async def async_client(
    session_factory: async_sessionmaker[AsyncSession],
    stripe_adapter: FakeStripeAdapter,
    notifier: FakeNotifier,
    pdf_service: FakePDFService,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Async HTTP client bound to the app, with a session per request and fake providers.

    Yields:
        AsyncClient: Async HTTP client for API testing
    """

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_stripe_adapter] = lambda: stripe_adapter
    app.dependency_overrides[get_notification_service] = lambda: notifier
    app.dependency_overrides[get_pdf_service] = lambda: pdf_service

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def test_user(db_session: AsyncSession) -> User:
    """Issuing user without a connected Stripe account."""
    user = User(**UserFactory.create())
    db_session.add(user)
    await db_session.commit()
    return user


@pytest_asyncio.fixture(scope="function")
async def test_client(db_session: AsyncSession, test_user: User) -> Client:
    """Client owned by test_user."""
    client = Client(**ClientFactory.create({"user_id": test_user.id}))
    db_session.add(client)
    await db_session.commit()
    return client

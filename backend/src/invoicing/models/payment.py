"""Payment model for provider payment attempts."""
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import relationship
import enum

from invoicing.models.base import Base


class PaymentStatus(enum.Enum):
    """Payment attempt status."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class PaymentProvider(enum.Enum):
    """Where the money moved."""

    STRIPE = "stripe"
    MANUAL = "manual"


# Statuses whose amount counts toward an invoice's paid total (net of refunds).
SETTLED_STATUSES = frozenset({PaymentStatus.SUCCEEDED, PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED})

REFUND_STATUSES = frozenset({PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED})


class Payment(Base):
    """
    One payment attempt against an invoice.

    Append-only: rows are never deleted. Status and refunded_amount change only through reconciliation.
    """

    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("refunded_amount >= 0", name="ck_payments_refunded_non_negative"),
        CheckConstraint("refunded_amount <= amount", name="ck_payments_refunded_le_amount"),
    )

    invoice_id = Column(Uuid(as_uuid=True), ForeignKey("invoices.id"), nullable=False, index=True)
    client_id = Column(Uuid(as_uuid=True), ForeignKey("clients.id"), nullable=True, index=True)
    provider = Column(SQLEnum(PaymentProvider), nullable=False, default=PaymentProvider.STRIPE)
    status = Column(SQLEnum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    fee_amount = Column(Numeric(12, 2), nullable=True)
    net_amount = Column(Numeric(12, 2), nullable=True)
    refunded_amount = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    paid_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)

    stripe_payment_intent_id = Column(String, nullable=True, unique=True, index=True)
    stripe_charge_id = Column(String, nullable=True, index=True)
    stripe_checkout_session_id = Column(String, nullable=True, unique=True, index=True)
    stripe_customer_id = Column(String, nullable=True)
    stripe_balance_transaction_id = Column(String, nullable=True)

    # Relationships
    invoice = relationship("Invoice", back_populates="payments")

    def __repr__(self) -> str:
        """String representation."""
        return f"<Payment(id={self.id}, invoice_id={self.invoice_id}, status={self.status.value}, amount={self.amount})>"

"""Recurring invoice schedule model."""
from sqlalchemy import Boolean, Column, DateTime, Enum as SQLEnum, ForeignKey, Integer, Numeric, String, Uuid
from sqlalchemy.orm import relationship
import enum

from invoicing.models.base import Base


class RecurringStatus(enum.Enum):
    """Schedule status. CANCELLED is terminal."""

    PENDING = "pending"
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class RecurringInterval(str, enum.Enum):
    """Supported recurrence intervals."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class RecurringInvoice(Base):
    """
    Billing schedule that materializes a one-line invoice every period.

    The sweep advances next_send_date; users pause, resume and cancel.
    """

    __tablename__ = "recurring_invoices"

    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    client_id = Column(Uuid(as_uuid=True), ForeignKey("clients.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    interval = Column(String(10), nullable=False)  # day, week, month, year
    day_of_month = Column(Integer, nullable=True)  # 1-31
    day_of_week = Column(Integer, nullable=True)  # 0 = Sunday ... 6 = Saturday
    next_send_date = Column(DateTime, nullable=False, index=True)
    status = Column(SQLEnum(RecurringStatus), nullable=False, default=RecurringStatus.ACTIVE, index=True)
    auto_pay = Column(Boolean, nullable=False, default=False)
    send_first_now = Column(Boolean, nullable=False, default=False)
    first_paid_at = Column(DateTime, nullable=True)
    last_sent_at = Column(DateTime, nullable=True)
    stripe_customer_id = Column(String, nullable=True)
    stripe_payment_method_id = Column(String, nullable=True)

    # Relationships
    user = relationship("User", back_populates="recurring_invoices")
    client = relationship("Client", back_populates="recurring_invoices")
    invoices = relationship("Invoice", back_populates="recurring_parent")

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<RecurringInvoice(id={self.id}, interval={self.interval}, "
            f"status={self.status.value}, next_send_date={self.next_send_date})>"
        )

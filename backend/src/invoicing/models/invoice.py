"""Invoice and line item models."""
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship
import enum

from invoicing.models.base import Base


class InvoiceStatus(enum.Enum):
    """Invoice lifecycle status."""

    DRAFT = "draft"
    SENT = "sent"
    OPEN = "open"
    UNPAID = "unpaid"
    VIEWED = "viewed"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    OVERDUE = "overdue"
    SIGNED = "signed"
    COMPLETED = "completed"
    VOID = "void"


# Statuses in which the client can see the invoice; entering one triggers document delivery.
CLIENT_VISIBLE_STATUSES = frozenset({InvoiceStatus.SENT, InvoiceStatus.OPEN, InvoiceStatus.UNPAID})

# Statuses that only payment reconciliation may assign.
PAYMENT_DERIVED_STATUSES = frozenset({InvoiceStatus.PAID, InvoiceStatus.PARTIALLY_PAID})

PAYABLE_STATUSES = frozenset(
    {
        InvoiceStatus.SENT,
        InvoiceStatus.OPEN,
        InvoiceStatus.UNPAID,
        InvoiceStatus.VIEWED,
        InvoiceStatus.PARTIALLY_PAID,
        InvoiceStatus.OVERDUE,
    }
)


class Invoice(Base):
    """
    Invoice issued by a user to a client.

    Totals are derived from line items by the calculator and are never edited on their own.
    Payment status (amount_paid, amount_refunded, PAID/PARTIALLY_PAID) is owned by payment reconciliation.
    """

    __tablename__ = "invoices"
    __table_args__ = (
        UniqueConstraint("user_id", "invoice_number", name="uq_invoices_user_number"),
        UniqueConstraint("recurring_parent_id", "recurring_period_start", name="uq_invoices_recurring_period"),
    )

    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    client_id = Column(Uuid(as_uuid=True), ForeignKey("clients.id"), nullable=False, index=True)
    invoice_number = Column(String, nullable=False, index=True)  # INV-0001, SUB-0001
    title = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    status = Column(SQLEnum(InvoiceStatus), nullable=False, default=InvoiceStatus.DRAFT, index=True)
    currency = Column(String(3), nullable=False, default="USD")
    issue_date = Column(DateTime, nullable=False)
    due_date = Column(DateTime, nullable=True, index=True)

    sub_total = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    tax_amount = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    total = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    amount_paid = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    amount_refunded = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    paid_at = Column(DateTime, nullable=True)

    sent_count = Column(Integer, nullable=False, default=0)
    pdf_url = Column(String, nullable=True)

    # Recurrence
    recurring = Column(Boolean, nullable=False, default=False)
    recurring_interval = Column(String(10), nullable=True)
    recurring_day_of_month = Column(Integer, nullable=True)
    recurring_day_of_week = Column(Integer, nullable=True)
    next_occurrence = Column(DateTime, nullable=True)
    recurring_parent_id = Column(
        Uuid(as_uuid=True), ForeignKey("recurring_invoices.id", ondelete="SET NULL"), nullable=True, index=True
    )
    recurring_period_start = Column(DateTime, nullable=True)

    # Relationships
    user = relationship("User", back_populates="invoices")
    client = relationship("Client", back_populates="invoices")
    recurring_parent = relationship("RecurringInvoice", back_populates="invoices")
    items = relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.position",
        lazy="selectin",
    )
    payments = relationship("Payment", back_populates="invoice")

    @property
    def amount_due(self) -> Decimal:
        """Outstanding balance after net payments."""
        return max(Decimal(self.total) - Decimal(self.amount_paid or 0), Decimal("0.00"))

    def __repr__(self) -> str:
        """String representation."""
        return f"<Invoice(id={self.id}, number={self.invoice_number}, status={self.status.value}, total={self.total})>"


class InvoiceItem(Base):
    """Line item of an invoice. Replaced wholesale whenever the invoice items change."""

    __tablename__ = "invoice_items"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_invoice_items_quantity"),
        CheckConstraint("unit_price >= 0", name="ck_invoice_items_unit_price"),
    )

    invoice_id = Column(Uuid(as_uuid=True), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(12, 2), nullable=False)
    tax_rate = Column(Numeric(5, 2), nullable=True)  # percentage, e.g. 7.25
    total = Column(Numeric(12, 2), nullable=False)

    invoice = relationship("Invoice", back_populates="items")

    def __repr__(self) -> str:
        """String representation."""
        return f"<InvoiceItem(id={self.id}, name={self.name}, quantity={self.quantity}, total={self.total})>"

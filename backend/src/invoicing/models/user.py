"""User model for the tenant that issues invoices."""
from sqlalchemy import Column, String
from sqlalchemy.orm import relationship

from invoicing.models.base import Base


class User(Base):
    """
    Invoice issuer.

    Owns clients, invoices and recurring schedules. A connected Stripe account, when present,
    receives the checkout sessions and refunds for this user's invoices.
    """

    __tablename__ = "users"

    email = Column(String, nullable=False, unique=True, index=True)
    name = Column(String, nullable=True)
    company_name = Column(String, nullable=True)
    stripe_account_id = Column(String, nullable=True)  # acct_... for Stripe Connect

    # Relationships
    clients = relationship("Client", back_populates="user", cascade="all, delete-orphan")
    invoices = relationship("Invoice", back_populates="user")
    recurring_invoices = relationship("RecurringInvoice", back_populates="user")

    @property
    def display_name(self) -> str:
        return self.company_name or self.name or self.email

    def __repr__(self) -> str:
        """String representation."""
        return f"<User(id={self.id}, email={self.email})>"

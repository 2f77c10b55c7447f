"""Client model for invoice recipients."""
from sqlalchemy import Column, ForeignKey, String, Uuid
from sqlalchemy.orm import relationship

from invoicing.models.base import Base


class Client(Base):
    """Customer of a user. Receives invoices by email."""

    __tablename__ = "clients"

    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    company_name = Column(String, nullable=True)
    email = Column(String, nullable=True, index=True)

    # Relationships
    user = relationship("User", back_populates="clients")
    invoices = relationship("Invoice", back_populates="client")
    recurring_invoices = relationship("RecurringInvoice", back_populates="client")

    @property
    def display_name(self) -> str:
        return self.company_name or self.name

    def __repr__(self) -> str:
        """String representation."""
        return f"<Client(id={self.id}, name={self.name})>"

"""SQLAlchemy ORM models for the invoicing service."""
# Import all models here to ensure they are registered with Alembic

from invoicing.models.base import Base
from invoicing.models.user import User
from invoicing.models.client import Client
from invoicing.models.invoice import Invoice, InvoiceItem, InvoiceStatus
from invoicing.models.payment import Payment, PaymentProvider, PaymentStatus
from invoicing.models.recurring_invoice import RecurringInterval, RecurringInvoice, RecurringStatus

__all__ = [
    "Base",
    "User",
    "Client",
    "Invoice",
    "InvoiceItem",
    "InvoiceStatus",
    "Payment",
    "PaymentProvider",
    "PaymentStatus",
    "RecurringInterval",
    "RecurringInvoice",
    "RecurringStatus",
]

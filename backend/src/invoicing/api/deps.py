"""FastAPI dependencies for database sessions and external collaborators."""
from invoicing.adapters.stripe_adapter import StripeAdapter
from invoicing.database import get_db
from invoicing.integrations.notification_service import NotificationService
from invoicing.services.invoice_pdf_service import InvoicePDFService

__all__ = ["get_db", "get_stripe_adapter", "get_notification_service", "get_pdf_service"]


async def get_stripe_adapter() -> StripeAdapter:
    """Get Stripe adapter instance."""
    return StripeAdapter()


async def get_notification_service() -> NotificationService:
    """Get email notification service."""
    return NotificationService()


async def get_pdf_service() -> InvoicePDFService:
    """Get invoice document service."""
    return InvoicePDFService()

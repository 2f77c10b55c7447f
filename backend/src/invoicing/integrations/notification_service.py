"""Email notifications delivered through Resend."""
from typing import TYPE_CHECKING, Any, Iterable

import resend
import structlog

from invoicing import metrics
from invoicing.config import settings
from invoicing.exceptions import ProviderError
from invoicing.services.invoice_pdf_service import build_template_environment
from invoicing.utils.currency import format_money

if TYPE_CHECKING:
    from invoicing.models.client import Client
    from invoicing.models.invoice import Invoice
    from invoicing.models.recurring_invoice import RecurringInvoice
    from invoicing.models.user import User

logger = structlog.get_logger(__name__)


class NotificationService:
    """
    Service for sending transactional email.

    Without a Resend API key every message is logged and skipped, so local
    environments and tests never reach the provider.
    """

    def __init__(self, api_key: str | None = None, sender: str | None = None):
        """
        Initialize notification service.

        Args:
            api_key: Resend API key (defaults to settings)
            sender: From address (defaults to settings)
        """
        self.api_key = settings.resend_api_key if api_key is None else api_key
        self.sender = sender or settings.email_from
        self.env = build_template_environment()

    async def send_email(self, to: str, subject: str, html: str, kind: str = "generic") -> dict[str, Any]:
        """
        Send a single HTML email.

        Args:
            to: Recipient address
            subject: Subject line
            html: HTML body
            kind: Label used for logs and metrics

        Returns:
            Dictionary with send status

        Raises:
            ProviderError: If Resend rejects the message
        """
        if not self.api_key or not to:
            logger.info("email_skipped", to=to, subject=subject, kind=kind, has_api_key=bool(self.api_key))
            metrics.notifications_sent_total.labels(kind=kind, outcome="skipped").inc()
            return {"status": "skipped", "to": to}

        resend.api_key = self.api_key
        params = {"from": self.sender, "to": [to], "subject": subject, "html": html}
        try:
            response = resend.Emails.send(params)
        except Exception as e:
            metrics.notifications_sent_total.labels(kind=kind, outcome="failed").inc()
            logger.warning("email_send_failed", to=to, kind=kind, error=str(e))
            raise ProviderError(f"Email delivery failed: {e}", provider="resend") from e

        message_id = response.get("id") if isinstance(response, dict) else getattr(response, "id", None)
        metrics.notifications_sent_total.labels(kind=kind, outcome="sent").inc()
        logger.info("email_sent", to=to, kind=kind, message_id=message_id)
        return {"status": "sent", "to": to, "message_id": message_id}

    async def send_invoice_email(self, invoice: "Invoice", client: "Client", user: "User") -> dict[str, Any]:
        """Email an invoice to its client."""
        issuer_name = user.display_name if user else settings.company_name
        html = self.env.get_template("invoice_email.html").render(
            invoice=invoice,
            client=client,
            issuer_name=issuer_name,
            pay_url=f"{settings.app_url.rstrip('/')}/invoices/{invoice.id}",
        )
        subject = f"Invoice {invoice.invoice_number} from {issuer_name}"
        return await self.send_email(client.email, subject, html, kind="invoice")

    async def send_admin_notification(self, subject: str, lines: Iterable[str]) -> dict[str, Any]:
        """Send a plain summary to the configured admin address."""
        body = "".join(f"<p>{line}</p>" for line in lines)
        return await self.send_email(settings.admin_notification_email, subject, body, kind="admin")

    async def send_recurring_payment_failed(
        self,
        schedule: "RecurringInvoice",
        invoice: "Invoice",
        user: "User",
        error: str,
    ) -> dict[str, Any]:
        """Tell the issuing user that an automatic charge for a schedule failed."""
        amount = format_money(invoice.total, invoice.currency)
        html = (
            f"<p>The automatic payment of {amount} for invoice {invoice.invoice_number} "
            f"({schedule.title}) could not be collected.</p>"
            f"<p>Reason: {error}</p>"
            "<p>The invoice has been emailed to your client and remains open.</p>"
        )
        subject = f"Automatic payment failed for {invoice.invoice_number}"
        return await self.send_email(user.email, subject, html, kind="recurring_payment_failed")

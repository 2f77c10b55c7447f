"""Invoice PDF generation and storage using WeasyPrint."""
from pathlib import Path
from typing import TYPE_CHECKING

import structlog
from jinja2 import Environment, FileSystemLoader

from invoicing import metrics
from invoicing.config import settings
from invoicing.exceptions import ProviderError
from invoicing.utils.currency import format_money

if TYPE_CHECKING:
    from invoicing.models.client import Client
    from invoicing.models.invoice import Invoice
    from invoicing.models.user import User

logger = structlog.get_logger(__name__)

TEMPLATES_DIR = Path(__file__).parent.parent / "templates"


def build_template_environment() -> Environment:
    """Jinja2 environment shared by the PDF and email renderers."""
    env = Environment(loader=FileSystemLoader(str(TEMPLATES_DIR)), autoescape=True)
    env.filters["format_money"] = format_money
    return env


class InvoicePDFService:
    """Service for generating invoice PDFs and storing them for download."""

    def __init__(self, storage_dir: str | None = None, base_url: str | None = None):
        self.env = build_template_environment()
        self.storage_dir = Path(storage_dir or settings.document_storage_dir)
        self.base_url = (base_url or settings.document_base_url).rstrip("/")

    def render_html(self, invoice: "Invoice", client: "Client", user: "User") -> str:
        """Render the invoice template to HTML."""
        template = self.env.get_template("invoice.html")
        return template.render(
            invoice=invoice,
            client=client,
            issuer_name=user.display_name if user else settings.company_name,
            company_name=settings.company_name,
            logo_url=settings.logo_url,
            brand_primary_color=settings.brand_primary_color,
            custom_footer=None,
        )

    async def generate_pdf(self, invoice: "Invoice", client: "Client", user: "User") -> bytes:
        """
        Generate PDF bytes for an invoice.

        Args:
            invoice: Invoice with items loaded
            client: Invoiced client
            user: Issuing user

        Returns:
            PDF bytes

        Raises:
            ProviderError: If WeasyPrint is unavailable or rendering fails
        """
        try:
            # Import WeasyPrint (heavy dependency with native libraries, imported only when needed)
            from weasyprint import HTML
        except (ImportError, OSError) as e:
            logger.error("weasyprint_unavailable", error=str(e))
            raise ProviderError("PDF renderer is not available", provider="weasyprint") from e

        html_content = self.render_html(invoice, client, user)
        try:
            pdf_bytes = HTML(string=html_content).write_pdf()
        except Exception as e:
            logger.exception("pdf_generation_failed", invoice_id=str(invoice.id), error=str(e))
            raise ProviderError(f"PDF generation failed: {e}", provider="weasyprint") from e

        logger.info(
            "invoice_pdf_generated",
            invoice_id=str(invoice.id),
            invoice_number=invoice.invoice_number,
            pdf_size_bytes=len(pdf_bytes),
        )
        return pdf_bytes

    async def store_invoice_pdf(self, invoice: "Invoice", client: "Client", user: "User") -> str:
        """
        Generate the PDF, write it to document storage and return its public URL.
        """
        pdf_bytes = await self.generate_pdf(invoice, client, user)
        filename = f"invoice-{invoice.id}.pdf"
        try:
            self.storage_dir.mkdir(parents=True, exist_ok=True)
            (self.storage_dir / filename).write_bytes(pdf_bytes)
        except OSError as e:
            metrics.invoice_documents_total.labels(outcome="failed").inc()
            raise ProviderError(f"Could not store invoice PDF: {e}", provider="storage") from e

        metrics.invoice_documents_total.labels(outcome="stored").inc()
        url = f"{self.base_url}/{filename}"
        logger.info("invoice_pdf_stored", invoice_id=str(invoice.id), url=url)
        return url

"""Recurring invoice worker.

Runs periodically (cron or any scheduler, hourly is enough) to:
1. Find active schedules whose next send date has passed
2. Issue one invoice per schedule and email it to the client
3. Charge saved cards for auto-pay schedules
4. Advance each schedule to its next period
"""
import asyncio
from datetime import datetime
from typing import Any

import structlog

from invoicing.database import AsyncSessionLocal
from invoicing.services.recurring_invoice_service import RecurringInvoiceService

logger = structlog.get_logger(__name__)


async def process_due_recurring_invoices(now: datetime | None = None) -> dict[str, Any]:
    """
    Run one sweep over due recurring invoice schedules.

    Returns:
        Dict with the processed count and per-schedule errors
    """
    async with AsyncSessionLocal() as db:
        try:
            result = await RecurringInvoiceService(db).process_due_recurring_invoices(now=now)
        except Exception as e:
            await db.rollback()
            logger.exception("recurring_invoice_worker_error", exc_info=e)
            raise

    logger.info(
        "recurring_invoice_worker_completed",
        processed=result["processed"],
        errors=len(result["errors"]),
    )
    return result


if __name__ == "__main__":
    """
    Run the sweep once.

    Usage:
        python -m invoicing.workers.recurring_invoices
    """
    from invoicing.middleware.logging import setup_logging

    setup_logging()
    asyncio.run(process_due_recurring_invoices())

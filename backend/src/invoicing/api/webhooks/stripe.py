"""Stripe webhook endpoint."""
import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from invoicing.adapters.stripe_adapter import StripeAdapter
from invoicing.api.deps import get_db, get_notification_service, get_stripe_adapter
from invoicing.integrations.notification_service import NotificationService
from invoicing.services.stripe_webhook_service import StripeWebhookService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/webhooks/stripe", tags=["webhooks"])


@router.get("")
async def stripe_webhook_health() -> dict[str, str]:
    """Lets operators confirm the endpoint is reachable before registering it in Stripe."""
    return {"status": "ok"}


@router.post("")
async def handle_stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    stripe_adapter: StripeAdapter = Depends(get_stripe_adapter),
    notifier: NotificationService = Depends(get_notification_service),
):
    """
    Handle incoming Stripe webhook events.

    Verifies the signature against the raw body, then reconciles:
    - checkout.session.completed: link the payment intent to the pending payment
    - payment_intent.succeeded: settle the payment and recompute the invoice
    - payment_intent.payment_failed / checkout.session.async_payment_failed: mark failed
    - payment_intent.canceled / checkout.session.expired: mark canceled
    - charge.refunded / refund.updated / charge.refund.updated: apply the
      provider's cumulative refunded amount

    Events that match no payment are acknowledged so Stripe stops retrying.

    Raises:
        HTTPException: 400 if the signature is missing or invalid
    """
    body = await request.body()
    signature = request.headers.get("stripe-signature")

    if not signature:
        logger.error("stripe_webhook_missing_signature")
        raise HTTPException(status_code=400, detail="Missing Stripe signature")

    try:
        event = await stripe_adapter.construct_webhook_event(body, signature)
    except ValueError as e:
        logger.error("stripe_webhook_verification_failed", error=str(e))
        raise HTTPException(status_code=400, detail=f"Webhook verification failed: {e}")

    service = StripeWebhookService(db, stripe_adapter=stripe_adapter, notifier=notifier)
    result = await service.handle_event(event)
    return {"received": True, **result}

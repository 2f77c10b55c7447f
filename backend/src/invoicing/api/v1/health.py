"""Health check endpoints for liveness and readiness probes."""
import os
from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from invoicing.api.deps import get_db
from invoicing.config import settings

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get("/health", status_code=status.HTTP_200_OK, tags=["Health"])
async def health_check() -> dict[str, str]:
    """
    Liveness probe.

    Returns as long as the process serves requests. No dependency is checked.
    """
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": "0.1.0",
    }


def _document_storage_status(path: str) -> str:
    # The directory is created on first write, so the closest existing parent decides
    candidate = os.path.abspath(path)
    while not os.path.exists(candidate):
        parent = os.path.dirname(candidate)
        if parent == candidate:
            break
        candidate = parent
    return "writable" if os.access(candidate, os.W_OK) else "not_writable"


def _provider_checks() -> dict[str, str]:
    stripe_ready = settings.stripe_secret_key.startswith(("sk_", "rk_")) and bool(settings.stripe_webhook_secret)
    return {
        "document_storage": _document_storage_status(settings.document_storage_dir),
        "stripe": "configured" if stripe_ready else "not_configured",
        "email": "configured" if settings.resend_api_key else "disabled",
    }


@router.get("/health/ready", tags=["Health"])
async def readiness_check(db: AsyncSession = Depends(get_db)) -> JSONResponse:
    """
    Readiness probe.

    Returns 200 when the database answers, 503 otherwise. Document storage, Stripe
    and email are reported too, but only degrade single operations (PDF delivery,
    checkout, invoice email) and never make the service unready.
    """
    try:
        await db.execute(text("SELECT 1"))
        database = "connected"
    except Exception as exc:
        logger.error("database_health_check_failed", error=str(exc))
        database = "disconnected"

    checks = {"database": database, **_provider_checks()}
    degraded = sorted(name for name, value in checks.items() if value in ("not_writable", "not_configured"))
    if degraded:
        logger.warning("readiness_degraded", checks=degraded)

    ready = database == "connected"
    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "ready": ready,
            "checks": checks,
            "timestamp": datetime.utcnow().isoformat(),
        },
    )

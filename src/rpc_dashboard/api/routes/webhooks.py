"""Stripe webhook receiver."""

from __future__ import annotations

import json

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse

from ...billing import BillingService
from ...errors import DashboardError
from ...logging_config import get_logger
from ..deps import get_billing

logger = get_logger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="stripe-signature"),
    billing: BillingService = Depends(get_billing),
):
    payload = await request.body()
    billing.construct_event(payload, stripe_signature)

    event = json.loads(payload)
    try:
        await billing.handle_event(event)
    except DashboardError as e:
        logger.error("stripe_webhook_failed", event_type=event.get("type"), error=e.message)
        return JSONResponse({"error": "Webhook handler failed"}, status_code=500)
    except Exception:
        logger.exception("stripe_webhook_failed", event_type=event.get("type"))
        return JSONResponse({"error": "Webhook handler failed"}, status_code=500)

    return {"received": True}

"""Stripe checkout."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ...billing import BillingService
from ...models import CheckoutRequest
from ..deps import current_user, get_billing

router = APIRouter(prefix="/api/billing", tags=["billing"])


@router.post("/create-checkout-session")
async def create_checkout_session(
    body: CheckoutRequest,
    user: dict = Depends(current_user),
    billing: BillingService = Depends(get_billing),
):
    url = await billing.create_checkout_session(user, body.plan)
    return {"url": url}

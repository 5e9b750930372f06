"""Account routes: profile, settings, dashboard summary, usage and billing history."""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter, Depends

from ...models import (
    PLAN_LIMITS,
    ApiKeyOut,
    InvoiceOut,
    Plan,
    ProfileUpdateRequest,
    SettingsUpdateRequest,
    SubscriptionOut,
    UsageTotals,
    UserOut,
    UserSettings,
    plan_from_value,
)
from ...store import AsyncStore
from ..deps import current_user, get_store

router = APIRouter(prefix="/api/user", tags=["user"])


def _month_start():
    return datetime.now(UTC).date().replace(day=1)


def _free_subscription() -> SubscriptionOut:
    return SubscriptionOut(plan=Plan.FREE, status="active")


@router.get("/me")
async def me(user: dict = Depends(current_user)):
    return UserOut.from_row(user).to_json()


@router.put("/profile")
async def update_profile(
    body: ProfileUpdateRequest,
    user: dict = Depends(current_user),
    store: AsyncStore = Depends(get_store),
):
    name = body.name.strip() if body.name else None
    updated = await store.update_user_name(user["id"], name or None)
    return UserOut.from_row(updated).to_json()


@router.get("/settings")
async def get_user_settings(user: dict = Depends(current_user), store: AsyncStore = Depends(get_store)):
    stored = await store.get_user_settings(user["id"])
    settings = UserSettings.model_validate(stored) if stored else UserSettings()
    return {"settings": settings.to_json()}


@router.put("/settings")
async def update_user_settings(
    body: SettingsUpdateRequest,
    user: dict = Depends(current_user),
    store: AsyncStore = Depends(get_store),
):
    settings = body.settings.to_json()
    await store.save_user_settings(user["id"], settings)
    return {"success": True, "message": "Settings updated successfully", "settings": settings}


@router.get("/dashboard")
async def dashboard(user: dict = Depends(current_user), store: AsyncStore = Depends(get_store)):
    """Keys, subscription, current-month usage and plan limits in one call."""
    keys = await store.list_api_keys(user["id"])
    subscription = await store.get_subscription(user["id"])
    usage = await store.usage_totals(user["id"], _month_start())
    plan = plan_from_value(subscription["plan"] if subscription else None)

    return {
        "apiKeys": [ApiKeyOut.from_row(row).to_json() for row in keys],
        "subscription": SubscriptionOut.from_row(subscription).to_json() if subscription else None,
        "usage": UsageTotals(**usage).to_json(),
        "limits": PLAN_LIMITS[plan].to_json(),
    }


@router.get("/usage")
async def usage(user: dict = Depends(current_user), store: AsyncStore = Depends(get_store)):
    today = datetime.now(UTC).date()
    month = await store.usage_totals(user["id"], today.replace(day=1))
    daily = await store.sum_requests(user["id"], today)
    subscription = await store.get_subscription(user["id"])
    plan = plan_from_value(subscription["plan"] if subscription else None)
    return {
        "usage": {
            "requests": month["requests"],
            "requestsToday": daily,
            "bandwidth": month["bytes_in"] + month["bytes_out"],
            "limit": PLAN_LIMITS[plan].requests,
        }
    }


@router.get("/subscription")
async def subscription(user: dict = Depends(current_user), store: AsyncStore = Depends(get_store)):
    row = await store.get_subscription(user["id"])
    current = SubscriptionOut.from_row(row) if row else _free_subscription()
    return {"subscription": current.to_json()}


@router.get("/invoices")
async def invoices(user: dict = Depends(current_user), store: AsyncStore = Depends(get_store)):
    rows = await store.list_invoices(user["id"])
    return {"invoices": [InvoiceOut.from_row(row).to_json() for row in rows]}

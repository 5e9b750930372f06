"""Stripe billing: checkout sessions and webhook event handling.

Stripe's Python SDK is synchronous, so calls run in a worker thread.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import stripe

from .config import Settings
from .errors import BillingError, NotFoundError, ValidationError
from .logging_config import get_logger
from .models import PAID_PLANS, Plan
from .store import AsyncStore

logger = get_logger(__name__)

# Placeholder customer IDs given to free signups; never sent to Stripe
FREE_CUSTOMER_PREFIX = "cus_free_"


def _timestamp(value) -> datetime | None:
    return datetime.fromtimestamp(int(value), UTC) if value else None


def _iso(value) -> str | None:
    ts = _timestamp(value)
    return ts.isoformat() if ts else None


def _subscription_period(subscription: dict) -> tuple[str | None, str | None]:
    """Period bounds, which newer API versions only report per subscription item."""
    start = subscription.get("current_period_start")
    end = subscription.get("current_period_end")
    if start is None:
        items = (subscription.get("items") or {}).get("data") or []
        if items:
            start = items[0].get("current_period_start")
            end = items[0].get("current_period_end")
    return _iso(start), _iso(end)


class BillingService:
    """Create checkout sessions and apply Stripe webhook events to the store."""

    def __init__(self, settings: Settings, store: AsyncStore):
        self.settings = settings
        self.store = store

    async def create_checkout_session(self, user: dict, plan: str) -> str:
        """Start a subscription checkout for ``user``.

        Args:
            user: User row
            plan: One of STARTER, PRO, ENTERPRISE

        Returns:
            Checkout URL to redirect the browser to

        Raises:
            ValidationError: If the plan is not a paid plan
            BillingError: If a Stripe call fails
        """
        if plan not in {p.value for p in PAID_PLANS}:
            raise ValidationError("Invalid plan")
        if not self.settings.stripe_configured:
            raise BillingError("Billing is not configured")

        subscription = await self.store.get_subscription(user["id"])
        customer_id = subscription["stripe_customer_id"] if subscription else None
        if customer_id and customer_id.startswith(FREE_CUSTOMER_PREFIX):
            customer_id = None

        try:
            if not customer_id:
                params = {"metadata": {"userId": user["id"]}}
                if user["email"]:
                    params["email"] = user["email"]
                if user["name"]:
                    params["name"] = user["name"]
                customer = await asyncio.to_thread(
                    stripe.Customer.create, api_key=self.settings.stripe_secret_key, **params
                )
                customer_id = customer["id"]
                await self.store.upsert_subscription(user["id"], customer_id)
                logger.info("stripe_customer_created", user_id=user["id"], customer_id=customer_id)

            session = await asyncio.to_thread(
                stripe.checkout.Session.create,
                api_key=self.settings.stripe_secret_key,
                customer=customer_id,
                payment_method_types=["card"],
                mode="subscription",
                allow_promotion_codes=True,
                line_items=[{"price": self.settings.price_ids[plan], "quantity": 1}],
                success_url=f"{self.settings.app_url}/dashboard?success=true&session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{self.settings.app_url}/dashboard?canceled=true",
                metadata={"userId": user["id"], "plan": plan},
            )
        except stripe.StripeError as e:
            logger.error("stripe_checkout_failed", user_id=user["id"], plan=plan, error=str(e))
            raise BillingError("Failed to create checkout session") from e

        logger.info("checkout_session_created", user_id=user["id"], plan=plan)
        return session["url"]

    def construct_event(self, payload: bytes, signature: str | None) -> stripe.Event:
        """Verify a webhook payload's signature.

        Raises:
            ValidationError: If the signature or payload is invalid
        """
        if not signature or not self.settings.stripe_webhook_secret:
            raise ValidationError("Invalid signature")
        try:
            return stripe.Webhook.construct_event(payload, signature, self.settings.stripe_webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            logger.warning("stripe_signature_invalid", error=str(e))
            raise ValidationError("Invalid signature") from e

    async def handle_event(self, event: dict) -> None:
        """Apply a verified webhook event. Unknown event types are ignored."""
        event_type = event["type"]
        obj = event["data"]["object"]
        handler = {
            "checkout.session.completed": self._checkout_completed,
            "customer.subscription.updated": self._subscription_updated,
            "customer.subscription.deleted": self._subscription_deleted,
            "invoice.paid": self._invoice_paid,
            "invoice.payment_failed": self._invoice_failed,
        }.get(event_type)

        if handler is None:
            logger.debug("stripe_event_ignored", event_type=event_type)
            return

        await handler(obj)
        logger.info("stripe_event_handled", event_type=event_type, object_id=obj.get("id"))

    async def _checkout_completed(self, session: dict) -> None:
        plan = (session.get("metadata") or {}).get("plan") or Plan.STARTER.value
        updated = await self.store.update_subscription_by_customer(
            session["customer"],
            stripe_subscription_id=session.get("subscription"),
            status="active",
            plan=plan,
        )
        if not updated:
            raise NotFoundError("Subscription not found", {"customer": session["customer"]})

    async def _subscription_updated(self, subscription: dict) -> None:
        start, end = _subscription_period(subscription)
        updated = await self.store.update_subscription_by_stripe_id(
            subscription["id"],
            status=subscription["status"],
            current_period_start=start,
            current_period_end=end,
            cancel_at_period_end=1 if subscription.get("cancel_at_period_end") else 0,
        )
        if not updated:
            raise NotFoundError("Subscription not found", {"subscription": subscription["id"]})

    async def _subscription_deleted(self, subscription: dict) -> None:
        updated = await self.store.update_subscription_by_stripe_id(
            subscription["id"],
            status="canceled",
            stripe_subscription_id=None,
            plan=Plan.FREE.value,
        )
        if not updated:
            raise NotFoundError("Subscription not found", {"subscription": subscription["id"]})

    async def _invoice_user_id(self, invoice: dict) -> str | None:
        user_id = (invoice.get("metadata") or {}).get("userId")
        if user_id and await self.store.get_user(user_id):
            return user_id
        if invoice.get("customer"):
            subscription = await self.store.get_subscription_by_customer(invoice["customer"])
            if subscription:
                return subscription["user_id"]
        return None

    async def _invoice_paid(self, invoice: dict) -> None:
        paid_at = (invoice.get("status_transitions") or {}).get("paid_at")
        await self.store.save_invoice(
            stripe_invoice_id=invoice["id"],
            amount=invoice.get("amount_paid") or 0,
            currency=invoice["currency"],
            status="paid",
            user_id=await self._invoice_user_id(invoice),
            paid_at=_timestamp(paid_at) or datetime.now(UTC),
        )

    async def _invoice_failed(self, invoice: dict) -> None:
        await self.store.save_invoice(
            stripe_invoice_id=invoice["id"],
            amount=invoice.get("amount_due") or 0,
            currency=invoice["currency"],
            status="failed",
            user_id=await self._invoice_user_id(invoice),
        )

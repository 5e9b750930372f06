"""Pydantic models for request payloads, API responses and plan limits."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase JSON keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


# =============================================================================
# PLANS
# =============================================================================


class Plan(str, Enum):
    """Subscription plan tiers."""

    FREE = "FREE"
    STARTER = "STARTER"
    PRO = "PRO"
    ENTERPRISE = "ENTERPRISE"


PAID_PLANS = (Plan.STARTER, Plan.PRO, Plan.ENTERPRISE)

UNLIMITED = -1


class PlanLimits(CamelModel):
    """Monthly request allowance and per-second rate limit of a plan."""

    requests: int = Field(..., description="Requests per month (-1 means unlimited)")
    rate_limit: int = Field(..., description="Requests per second")


PLAN_LIMITS: dict[Plan, PlanLimits] = {
    Plan.FREE: PlanLimits(requests=100_000, rate_limit=10),
    Plan.STARTER: PlanLimits(requests=1_000_000, rate_limit=50),
    Plan.PRO: PlanLimits(requests=10_000_000, rate_limit=100),
    Plan.ENTERPRISE: PlanLimits(requests=UNLIMITED, rate_limit=1000),
}

# Monthly price in USD
PLAN_PRICES: dict[Plan, int] = {
    Plan.FREE: 0,
    Plan.STARTER: 29,
    Plan.PRO: 99,
    Plan.ENTERPRISE: 299,
}

PLAN_FEATURES: dict[Plan, list[str]] = {
    Plan.FREE: ["100K requests/month", "10 requests/second", "Community support", "Basic analytics"],
    Plan.STARTER: [
        "1M requests/month",
        "50 requests/second",
        "Email support",
        "Advanced analytics",
        "Custom endpoints",
    ],
    Plan.PRO: [
        "10M requests/month",
        "100 requests/second",
        "Priority support",
        "Advanced analytics",
        "Custom endpoints",
        "SLA guarantee",
    ],
    Plan.ENTERPRISE: [
        "Unlimited requests",
        "1000 requests/second",
        "24/7 phone support",
        "Custom SLA",
        "Dedicated endpoints",
        "White-label options",
    ],
}


def plan_from_value(value: str | None) -> Plan:
    """Parse a stored plan name, treating unknown values as FREE."""
    try:
        return Plan((value or Plan.FREE.value).upper())
    except ValueError:
        return Plan.FREE


# =============================================================================
# JSON-RPC
# =============================================================================

# JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
INTERNAL_ERROR = -32603
AUTH_REQUIRED = -32000
LIMIT_EXCEEDED = -32005


class RpcRequest(BaseModel):
    """A single JSON-RPC 2.0 request."""

    model_config = ConfigDict(extra="allow")

    jsonrpc: str = "2.0"
    id: int | str | None = None
    method: str = Field(..., min_length=1)
    params: Any = None


def rpc_error(request_id: int | str | None, code: int, message: str, data: Any = None) -> dict:
    """Build a JSON-RPC error envelope."""
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": "2.0", "id": request_id, "error": error}


# =============================================================================
# AUTH
# =============================================================================


MAX_PASSWORD_BYTES = 72


class SignupRequest(BaseModel):
    """Email/password signup payload."""

    email: EmailStr
    password: str = Field(..., min_length=8)
    name: str | None = Field(default=None, min_length=2)

    @field_validator("password")
    @classmethod
    def _fits_bcrypt(cls, v: str) -> str:
        # bcrypt input is capped at 72 bytes
        if len(v.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
        return v


class PrivyWallet(CamelModel):
    address: str | None = None
    wallet_client: str | None = None


class LinkedAccount(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    type: str
    address: str | None = None


class PrivyLoginRequest(CamelModel):
    """Payload posted by the dashboard after a Privy login."""

    privy_id: str = Field(..., min_length=1)
    email: str | None = None
    wallet: PrivyWallet | None = None
    linked_accounts: list[LinkedAccount] = Field(default_factory=list)

    @property
    def wallet_address(self) -> str | None:
        """Wallet address from the connected wallet or the first linked wallet account."""
        if self.wallet and self.wallet.address:
            return self.wallet.address
        for account in self.linked_accounts:
            if account.type == "wallet" and account.address:
                return account.address
        return None


# =============================================================================
# API KEYS
# =============================================================================


class CreateApiKeyRequest(CamelModel):
    name: str = ""
    expires_in: int | None = Field(default=None, ge=1, description="Days until the key expires")
    rate_limit: int | None = Field(default=None, ge=1)
    daily_limit: int | None = Field(default=None, ge=1)
    monthly_limit: int | None = Field(default=None, ge=1)


class UpdateApiKeyRequest(CamelModel):
    name: str | None = None
    rate_limit: int | None = Field(default=None, ge=1)
    daily_limit: int | None = Field(default=None, ge=1)
    monthly_limit: int | None = Field(default=None, ge=1)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        if not v:
            raise ValueError("Name cannot be blank")
        return v


class ApiKeyOut(CamelModel):
    """API key as shown to its owner. The plaintext key is only set on creation."""

    id: str
    name: str
    prefix: str
    active: bool
    rate_limit: int
    daily_limit: int
    monthly_limit: int
    created_at: datetime
    last_used_at: datetime | None = None
    expires_at: datetime | None = None
    key: str | None = None

    @classmethod
    def from_row(cls, row: dict, key: str | None = None) -> ApiKeyOut:
        return cls(
            id=row["id"],
            name=row["name"],
            prefix=row["prefix"],
            active=bool(row["active"]),
            rate_limit=row["rate_limit"],
            daily_limit=row["daily_limit"],
            monthly_limit=row["monthly_limit"],
            created_at=row["created_at"],
            last_used_at=row["last_used_at"],
            expires_at=row["expires_at"],
            key=key,
        )


# =============================================================================
# USERS & BILLING
# =============================================================================


class UserOut(CamelModel):
    id: str
    privy_id: str
    email: str | None = None
    wallet_address: str | None = None
    name: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict) -> UserOut:
        return cls(
            id=row["id"],
            privy_id=row["privy_id"],
            email=row["email"],
            wallet_address=row["wallet_address"],
            name=row["name"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


class ProfileUpdateRequest(BaseModel):
    name: str | None = None


class CheckoutRequest(BaseModel):
    plan: str


class SubscriptionOut(CamelModel):
    plan: Plan
    status: str
    stripe_customer_id: str | None = None
    stripe_subscription_id: str | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    cancel_at_period_end: bool = False
    price: int = 0

    @classmethod
    def from_row(cls, row: dict) -> SubscriptionOut:
        plan = plan_from_value(row["plan"])
        return cls(
            plan=plan,
            status=row["status"],
            stripe_customer_id=row["stripe_customer_id"],
            stripe_subscription_id=row["stripe_subscription_id"],
            current_period_start=row["current_period_start"],
            current_period_end=row["current_period_end"],
            cancel_at_period_end=bool(row["cancel_at_period_end"]),
            price=PLAN_PRICES[plan],
        )


class UsageTotals(CamelModel):
    requests: int = 0
    success_count: int = 0
    error_count: int = 0
    bytes_in: int = 0
    bytes_out: int = 0


class InvoiceOut(CamelModel):
    id: str
    stripe_invoice_id: str
    date: datetime
    amount: float = Field(..., description="Amount in major currency units")
    currency: str
    status: str
    paid_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict) -> InvoiceOut:
        return cls(
            id=row["id"],
            stripe_invoice_id=row["stripe_invoice_id"],
            date=row["created_at"],
            amount=row["amount"] / 100,
            currency=row["currency"],
            status=row["status"],
            paid_at=row["paid_at"],
        )


# =============================================================================
# SETTINGS
# =============================================================================


class NotificationSettings(CamelModel):
    email: bool = True
    api_errors: bool = True
    usage_alerts: bool = True
    weekly_reports: bool = False
    product_updates: bool = True


class SecuritySettings(CamelModel):
    two_factor_enabled: bool = False
    api_key_expiry: str = "90"
    ip_whitelist: list[str] = Field(default_factory=list)


class PreferenceSettings(CamelModel):
    theme: str = "system"
    language: str = "en"
    timezone: str = "UTC"
    date_format: str = "MM/DD/YYYY"


class WebhookSettings(CamelModel):
    enabled: bool = False
    url: str = ""
    events: list[str] = Field(default_factory=list)


class UserSettings(CamelModel):
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    preferences: PreferenceSettings = Field(default_factory=PreferenceSettings)
    webhooks: WebhookSettings = Field(default_factory=WebhookSettings)


class SettingsUpdateRequest(BaseModel):
    settings: UserSettings


# =============================================================================
# RPC CONFIGURATION & ENDPOINTS
# =============================================================================


class EndpointConfig(CamelModel):
    model_config = ConfigDict(extra="allow")

    url: str
    weight: int = 1
    priority: int = 1
    max_retries: int = 3
    timeout: int = 5000


class RpcConfig(BaseModel):
    """Routing configuration pushed to the Multi-RPC backend."""

    model_config = ConfigDict(extra="allow")

    endpoints: list[EndpointConfig]
    routing_strategy: str = "health_based"
    cache_ttl: int = 60
    consensus_required: bool = False


class CustomEndpointRequest(BaseModel):
    url: str = ""
    name: str = ""
    region: str | None = None


class CustomEndpointOut(CamelModel):
    id: str
    url: str
    name: str
    region: str
    healthy: bool
    latency: int
    added_at: datetime
    custom: bool = True

    @classmethod
    def from_row(cls, row: dict) -> CustomEndpointOut:
        return cls(
            id=row["id"],
            url=row["url"],
            name=row["name"],
            region=row["region"],
            healthy=bool(row["healthy"]),
            latency=row["latency_ms"],
            added_at=row["created_at"],
        )

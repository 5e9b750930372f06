"""Configuration management using pydantic-settings."""

from __future__ import annotations

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_FALLBACK_RPC_URLS = [
    "https://api.mainnet-beta.solana.com",
    "https://solana-api.projectserum.com",
    "https://rpc.ankr.com/solana",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Provider credentials also accept their conventional variable names
    (e.g. ``PRIVY_APP_SECRET`` or ``STRIPE_SECRET_KEY``) so the same ``.env``
    can be shared with other services.
    """

    model_config = SettingsConfigDict(
        env_prefix="RPC_DASHBOARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    environment: str = Field(
        default="development",
        description="Deployment environment: development, production, test",
    )

    # Storage
    db_path: str = Field(
        default="rpc_dashboard.sqlite3",
        validation_alias=AliasChoices("DATABASE_PATH", "RPC_DASHBOARD_DB_PATH"),
        description="Path to SQLite database file",
    )

    # ==========================================================================
    # MULTI-RPC BACKEND
    # ==========================================================================

    rpc_backend_url: str = Field(
        default="http://localhost:8080",
        validation_alias=AliasChoices("RPC_URL", "RPC_DASHBOARD_RPC_BACKEND_URL"),
        description="Base URL of the Multi-RPC gateway backend",
    )
    rpc_admin_key: str = Field(
        default="",
        validation_alias=AliasChoices("RPC_ADMIN_KEY", "RPC_DASHBOARD_RPC_ADMIN_KEY"),
        description="Admin API key sent as X-API-Key to the backend admin API",
    )
    fallback_rpc_urls: list[str] = Field(
        default_factory=lambda: list(DEFAULT_FALLBACK_RPC_URLS),
        description="Public JSON-RPC endpoints used when the backend is unavailable",
    )
    health_cache_ttl_seconds: float = Field(
        default=30.0,
        gt=0,
        description="How long a cached endpoint health result stays fresh",
    )
    health_probe_timeout: float = Field(
        default=2.0,
        gt=0,
        description="Timeout for load balancer health probes (seconds)",
    )
    monitor_probe_timeout: float = Field(
        default=5.0,
        gt=0,
        description="Timeout for on-demand endpoint probes (seconds)",
    )
    rpc_request_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for forwarded JSON-RPC requests (seconds)",
    )

    # ==========================================================================
    # AUTHENTICATION (Privy)
    # ==========================================================================

    privy_app_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("PRIVY_APP_ID", "RPC_DASHBOARD_PRIVY_APP_ID"),
        description="Privy application ID",
    )
    privy_app_secret: str | None = Field(
        default=None,
        validation_alias=AliasChoices("PRIVY_APP_SECRET", "RPC_DASHBOARD_PRIVY_APP_SECRET"),
        description="Privy application secret",
    )
    privy_verification_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("PRIVY_VERIFICATION_KEY", "RPC_DASHBOARD_PRIVY_VERIFICATION_KEY"),
        description="PEM-encoded ES256 public key used to verify Privy access tokens",
    )
    privy_api_url: str = Field(
        default="https://auth.privy.io/api/v1",
        description="Privy REST API base URL",
    )

    # ==========================================================================
    # BILLING (Stripe)
    # ==========================================================================

    stripe_secret_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("STRIPE_SECRET_KEY", "RPC_DASHBOARD_STRIPE_SECRET_KEY"),
        description="Stripe secret key for billing",
    )
    stripe_webhook_secret: str | None = Field(
        default=None,
        validation_alias=AliasChoices("STRIPE_WEBHOOK_SECRET", "RPC_DASHBOARD_STRIPE_WEBHOOK_SECRET"),
        description="Stripe webhook signing secret",
    )
    stripe_price_starter: str = Field(
        default="price_starter",
        validation_alias=AliasChoices("STRIPE_STARTER_PRICE_ID", "RPC_DASHBOARD_STRIPE_PRICE_STARTER"),
        description="Stripe price ID for the Starter plan",
    )
    stripe_price_pro: str = Field(
        default="price_pro",
        validation_alias=AliasChoices("STRIPE_PRO_PRICE_ID", "RPC_DASHBOARD_STRIPE_PRICE_PRO"),
        description="Stripe price ID for the Pro plan",
    )
    stripe_price_enterprise: str = Field(
        default="price_enterprise",
        validation_alias=AliasChoices("STRIPE_ENTERPRISE_PRICE_ID", "RPC_DASHBOARD_STRIPE_PRICE_ENTERPRISE"),
        description="Stripe price ID for the Enterprise plan",
    )
    app_url: str = Field(
        default="http://localhost:8000",
        validation_alias=AliasChoices("APP_URL", "RPC_DASHBOARD_APP_URL"),
        description="Public URL of the dashboard (used in Stripe redirect URLs)",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR",
    )
    log_json: bool = Field(
        default=False,
        description="Output logs as JSON (for production)",
    )

    @property
    def privy_configured(self) -> bool:
        """Check if Privy credentials are present."""
        return bool(self.privy_app_id and self.privy_app_secret)

    @property
    def stripe_configured(self) -> bool:
        """Check if Stripe billing is configured."""
        return bool(self.stripe_secret_key)

    def missing_required(self) -> list[str]:
        """Return the names of required settings that are not set."""
        missing = []
        if not self.privy_app_id:
            missing.append("PRIVY_APP_ID")
        if not self.privy_app_secret:
            missing.append("PRIVY_APP_SECRET")
        return missing

    @property
    def price_ids(self) -> dict[str, str]:
        """Stripe price IDs keyed by paid plan name."""
        return {
            "STARTER": self.stripe_price_starter,
            "PRO": self.stripe_price_pro,
            "ENTERPRISE": self.stripe_price_enterprise,
        }


def get_settings() -> Settings:
    """Load and return application settings."""
    return Settings()

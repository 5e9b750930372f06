"""FastAPI dependencies: shared services from app state and the authenticated user."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from fastapi import Depends, Header, Request

from ..api_keys import ApiKeyManager
from ..backend import BackendClient
from ..billing import BillingService
from ..config import Settings
from ..errors import AuthenticationError
from ..load_balancer import LoadBalancer
from ..logging_config import get_logger
from ..privy import AuthClaims, PrivyClient
from ..rate_limiter import RateLimiter, UsageTracker
from ..rpc_proxy import RpcProxy
from ..store import AsyncStore

logger = get_logger(__name__)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> AsyncStore:
    return request.app.state.store


def get_privy(request: Request) -> PrivyClient | None:
    return request.app.state.privy


def get_backend(request: Request) -> BackendClient:
    return request.app.state.backend


def get_balancer(request: Request) -> LoadBalancer:
    return request.app.state.balancer


def get_key_manager(request: Request) -> ApiKeyManager:
    return request.app.state.keys


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_usage_tracker(request: Request) -> UsageTracker:
    return request.app.state.usage


def get_proxy(request: Request) -> RpcProxy:
    return request.app.state.proxy


def get_billing(request: Request) -> BillingService:
    return request.app.state.billing


def bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    token = authorization.removeprefix("Bearer ").strip()
    return token or None


async def verify_token(privy: PrivyClient | None, token: str) -> AuthClaims:
    """Verify a Privy access token.

    Without Privy credentials (local development) the token itself is taken
    as the Privy user ID.
    """
    if privy is None:
        logger.warning("auth_not_configured", detail="accepting token as user id")
        now = datetime.now(UTC)
        return AuthClaims(
            user_id=token,
            app_id="development",
            session_id=None,
            issued_at=now,
            expiration=now + timedelta(hours=1),
        )
    return await privy.verify_auth_token(token)


async def get_claims(
    authorization: str | None = Header(default=None),
    privy: PrivyClient | None = Depends(get_privy),
) -> AuthClaims:
    token = bearer_token(authorization)
    if token is None:
        raise AuthenticationError("Unauthorized")
    return await verify_token(privy, token)


async def current_user(
    claims: AuthClaims = Depends(get_claims),
    store: AsyncStore = Depends(get_store),
) -> dict:
    """The user row for the verified Privy identity, created on first request."""
    return await store.ensure_user(claims.user_id)

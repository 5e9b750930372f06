"""Sign-in (Privy) and email/password signup."""

from __future__ import annotations

import asyncio
import secrets
import time

import bcrypt
import httpx
from fastapi import APIRouter, Depends, Header

from ...api_keys import ApiKeyManager
from ...billing import FREE_CUSTOMER_PREFIX
from ...errors import AuthenticationError, ValidationError
from ...logging_config import get_logger
from ...models import Plan, PrivyLoginRequest, SignupRequest
from ...privy import PrivyClient
from ...store import AsyncStore
from ..deps import bearer_token, get_key_manager, get_privy, get_store

logger = get_logger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

BCRYPT_ROUNDS = 12


def _hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


@router.post("/privy")
async def privy_login(
    body: PrivyLoginRequest,
    authorization: str | None = Header(default=None),
    privy: PrivyClient | None = Depends(get_privy),
    store: AsyncStore = Depends(get_store),
):
    """Create or refresh the local user after a Privy login."""
    email = body.email
    name = None

    if privy is not None:
        token = bearer_token(authorization)
        if token is None:
            raise AuthenticationError("Unauthorized")
        claims = await privy.verify_auth_token(token)
        if claims.user_id != body.privy_id:
            raise AuthenticationError("Invalid token")

        try:
            profile = await privy.get_user(body.privy_id)
            email = email or profile.email
            name = profile.name
        except httpx.HTTPError as e:
            logger.info("privy_lookup_skipped", privy_id=body.privy_id, error=str(e))

    user = await store.upsert_privy_user(
        privy_id=body.privy_id,
        email=email,
        wallet_address=body.wallet_address,
        wallet_type=(body.wallet.wallet_client if body.wallet else None) or "unknown",
        name=name,
    )
    logger.info("privy_login", user_id=user["id"])
    return {
        "success": True,
        "user": {"id": user["id"], "email": user["email"], "walletAddress": user["wallet_address"]},
    }


@router.post("/signup")
async def signup(
    body: SignupRequest,
    store: AsyncStore = Depends(get_store),
    keys: ApiKeyManager = Depends(get_key_manager),
):
    """Register an email/password account with a default key and a free plan."""
    if await store.get_user_by_email(body.email):
        raise ValidationError("User already exists")

    password_hash = await asyncio.to_thread(_hash_password, body.password)
    user = await store.create_user(
        privy_id=f"local_{int(time.time() * 1000)}_{secrets.token_hex(5)}",
        email=body.email,
        name=body.name,
        password_hash=password_hash,
    )
    _, api_key = await keys.create(user["id"], "Default Key")
    await store.upsert_subscription(
        user["id"],
        f"{FREE_CUSTOMER_PREFIX}{user['id']}",
        plan=Plan.FREE.value,
        status="active",
    )

    logger.info("user_signed_up", user_id=user["id"])
    return {
        "message": "User created successfully",
        "user": {"id": user["id"], "email": user["email"], "name": user["name"]},
        "apiKey": api_key,
    }

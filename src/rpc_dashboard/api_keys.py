"""API key generation, storage and verification.

Keys look like ``mrpc_<64 hex chars>``. Only the sha256 hash is stored; the
plaintext is returned once, when the key is created.
"""

from __future__ import annotations

import hashlib
import re
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from .errors import ValidationError
from .logging_config import get_logger
from .store import AsyncStore

logger = get_logger(__name__)

KEY_PREFIX = "mrpc"
KEY_BYTES = 32

DEFAULT_RATE_LIMIT = 10
DEFAULT_DAILY_LIMIT = 10_000
DEFAULT_MONTHLY_LIMIT = 100_000

_KEY_PATTERN = re.compile(rf"^{KEY_PREFIX}_[a-f0-9]{{{KEY_BYTES * 2}}}$")


def hash_key(key: str) -> str:
    """Hash an API key for storage."""
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def is_valid_format(key: str) -> bool:
    return bool(_KEY_PATTERN.match(key))


def generate_key() -> tuple[str, str, str]:
    """Generate a new API key.

    Returns:
        Tuple of (plaintext key, sha256 hash, display prefix)
    """
    key = f"{KEY_PREFIX}_{secrets.token_hex(KEY_BYTES)}"
    return key, hash_key(key), key[:12] + "..."


@dataclass(frozen=True)
class VerifiedKey:
    """Owner and limits of a key that passed verification."""

    user_id: str
    key_id: str
    rate_limit: int
    daily_limit: int
    monthly_limit: int


class ApiKeyManager:
    """Create, verify and manage API keys for a user."""

    def __init__(self, store: AsyncStore):
        self.store = store

    async def create(
        self,
        user_id: str,
        name: str,
        expires_in_days: int | None = None,
        rate_limit: int | None = None,
        daily_limit: int | None = None,
        monthly_limit: int | None = None,
    ) -> tuple[dict, str]:
        """Create a key for ``user_id``.

        Args:
            user_id: Owner of the key
            name: Display name (must not be blank)
            expires_in_days: Optional lifetime in days
            rate_limit: Requests per second
            daily_limit: Requests per day
            monthly_limit: Requests per month

        Returns:
            Tuple of (stored key row, plaintext key)

        Raises:
            ValidationError: If the name is blank
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name is required")

        key, key_hash, prefix = generate_key()
        expires_at = datetime.now(UTC) + timedelta(days=expires_in_days) if expires_in_days else None

        row = await self.store.create_api_key(
            user_id=user_id,
            name=name,
            key_hash=key_hash,
            prefix=prefix,
            rate_limit=rate_limit or DEFAULT_RATE_LIMIT,
            daily_limit=daily_limit or DEFAULT_DAILY_LIMIT,
            monthly_limit=monthly_limit or DEFAULT_MONTHLY_LIMIT,
            expires_at=expires_at,
        )
        logger.info("api_key_created", key_id=row["id"], user_id=user_id, prefix=prefix)
        return row, key

    async def verify(self, key: str) -> VerifiedKey | None:
        """Check a plaintext key.

        Returns None for malformed, unknown, inactive or expired keys. Expired
        keys are deactivated as a side effect.
        """
        if not is_valid_format(key):
            return None

        row = await self.store.get_api_key_by_hash(hash_key(key))
        if not row or not row["active"]:
            return None

        if row["expires_at"] and datetime.fromisoformat(row["expires_at"]) < datetime.now(UTC):
            await self.store.deactivate_api_key(row["id"])
            logger.info("api_key_expired", key_id=row["id"])
            return None

        await self.store.touch_api_key(row["id"])
        return VerifiedKey(
            user_id=row["user_id"],
            key_id=row["id"],
            rate_limit=row["rate_limit"],
            daily_limit=row["daily_limit"],
            monthly_limit=row["monthly_limit"],
        )

    async def list(self, user_id: str) -> list[dict]:
        """List a user's keys, newest first. Hashes are never included."""
        rows = await self.store.list_api_keys(user_id)
        for row in rows:
            row.pop("key_hash", None)
        return rows

    async def revoke(self, user_id: str, key_id: str) -> bool:
        revoked = await self.store.update_api_key(user_id, key_id, active=0)
        if revoked:
            logger.info("api_key_revoked", key_id=key_id, user_id=user_id)
        return revoked

    async def update(
        self,
        user_id: str,
        key_id: str,
        name: str | None = None,
        rate_limit: int | None = None,
        daily_limit: int | None = None,
        monthly_limit: int | None = None,
    ) -> bool:
        return await self.store.update_api_key(
            user_id,
            key_id,
            name=name,
            rate_limit=rate_limit,
            daily_limit=daily_limit,
            monthly_limit=monthly_limit,
        )

    async def delete(self, user_id: str, key_id: str) -> bool:
        deleted = await self.store.delete_api_key(user_id, key_id)
        if deleted:
            logger.info("api_key_deleted", key_id=key_id, user_id=user_id)
        return deleted

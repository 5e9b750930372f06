import hashlib
from datetime import UTC, datetime, timedelta

import pytest

from rpc_dashboard.api_keys import (
    DEFAULT_DAILY_LIMIT,
    DEFAULT_MONTHLY_LIMIT,
    DEFAULT_RATE_LIMIT,
    ApiKeyManager,
    generate_key,
    hash_key,
    is_valid_format,
)
from rpc_dashboard.errors import ValidationError


def test_generate_key_format():
    key, key_hash, prefix = generate_key()

    assert key.startswith("mrpc_")
    assert len(key) == 5 + 64
    assert is_valid_format(key)
    assert key_hash == hashlib.sha256(key.encode()).hexdigest()
    assert prefix == key[:12] + "..."


def test_generate_key_is_unique():
    assert generate_key()[0] != generate_key()[0]


@pytest.mark.parametrize(
    "candidate",
    ["", "mrpc_", "mrpc_xyz", "sk_" + "a" * 64, "mrpc_" + "A" * 64, "mrpc_" + "a" * 63],
)
def test_is_valid_format_rejects_malformed_keys(candidate):
    assert not is_valid_format(candidate)


@pytest.mark.asyncio
async def test_create_applies_defaults(store, user):
    manager = ApiKeyManager(store)
    row, key = await manager.create(user["id"], "  Production  ")

    assert row["name"] == "Production"
    assert row["key_hash"] == hash_key(key)
    assert row["active"] == 1
    assert (row["rate_limit"], row["daily_limit"], row["monthly_limit"]) == (
        DEFAULT_RATE_LIMIT,
        DEFAULT_DAILY_LIMIT,
        DEFAULT_MONTHLY_LIMIT,
    )
    assert row["expires_at"] is None


@pytest.mark.asyncio
async def test_create_with_expiry_and_limits(store, user):
    row, _ = await ApiKeyManager(store).create(
        user["id"], "Short lived", expires_in_days=7, rate_limit=2, daily_limit=50, monthly_limit=500
    )
    expires_at = datetime.fromisoformat(row["expires_at"])
    assert timedelta(days=6) < expires_at - datetime.now(UTC) <= timedelta(days=7)
    assert (row["rate_limit"], row["daily_limit"], row["monthly_limit"]) == (2, 50, 500)


@pytest.mark.asyncio
async def test_create_requires_a_name(store, user):
    with pytest.raises(ValidationError) as exc_info:
        await ApiKeyManager(store).create(user["id"], "   ")
    assert exc_info.value.message == "Name is required"


@pytest.mark.asyncio
async def test_verify_valid_key_touches_last_used(store, user):
    manager = ApiKeyManager(store)
    row, key = await manager.create(user["id"], "Main", rate_limit=5)

    verified = await manager.verify(key)
    assert verified.user_id == user["id"]
    assert verified.key_id == row["id"]
    assert verified.rate_limit == 5
    assert (await store.get_api_key(row["id"]))["last_used_at"] is not None


@pytest.mark.asyncio
async def test_verify_rejects_unknown_and_revoked_keys(store, user):
    manager = ApiKeyManager(store)
    row, key = await manager.create(user["id"], "Main")

    assert await manager.verify(generate_key()[0]) is None
    assert await manager.verify("not-a-key") is None

    assert await manager.revoke(user["id"], row["id"]) is True
    assert await manager.verify(key) is None


@pytest.mark.asyncio
async def test_verify_deactivates_expired_key(store, user):
    key, key_hash, prefix = generate_key()
    row = await store.create_api_key(
        user["id"], "Expired", key_hash, prefix, expires_at=datetime.now(UTC) - timedelta(minutes=1)
    )

    assert await ApiKeyManager(store).verify(key) is None
    assert (await store.get_api_key(row["id"]))["active"] == 0


@pytest.mark.asyncio
async def test_list_hides_hashes(store, user):
    manager = ApiKeyManager(store)
    await manager.create(user["id"], "One")
    await manager.create(user["id"], "Two")

    keys = await manager.list(user["id"])
    assert {k["name"] for k in keys} == {"One", "Two"}
    assert all("key_hash" not in k for k in keys)


@pytest.mark.asyncio
async def test_update_and_delete_are_owner_scoped(store, user):
    manager = ApiKeyManager(store)
    other = await store.create_user(privy_id="did:privy:mallory")
    row, _ = await manager.create(user["id"], "Main")

    assert await manager.update(other["id"], row["id"], name="Nope") is False
    assert await manager.update(user["id"], row["id"], daily_limit=20) is True
    assert (await store.get_api_key(row["id"]))["daily_limit"] == 20

    assert await manager.delete(other["id"], row["id"]) is False
    assert await manager.delete(user["id"], row["id"]) is True
    assert await store.get_api_key(row["id"]) is None

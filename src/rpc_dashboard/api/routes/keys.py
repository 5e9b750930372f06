"""API key management for the signed-in user."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from ...api_keys import ApiKeyManager
from ...errors import NotFoundError, ValidationError
from ...models import ApiKeyOut, CreateApiKeyRequest, UpdateApiKeyRequest
from ..deps import current_user, get_key_manager

router = APIRouter(prefix="/api/keys", tags=["keys"])


def _require_id(key_id: str | None) -> str:
    if not key_id:
        raise ValidationError("Key ID is required")
    return key_id


@router.get("")
async def list_keys(user: dict = Depends(current_user), keys: ApiKeyManager = Depends(get_key_manager)):
    rows = await keys.list(user["id"])
    return {"keys": [ApiKeyOut.from_row(row).to_json() for row in rows]}


@router.post("")
async def create_key(
    body: CreateApiKeyRequest,
    user: dict = Depends(current_user),
    keys: ApiKeyManager = Depends(get_key_manager),
):
    """Create a key. The plaintext key is only ever returned here."""
    row, key = await keys.create(
        user["id"],
        body.name,
        expires_in_days=body.expires_in,
        rate_limit=body.rate_limit,
        daily_limit=body.daily_limit,
        monthly_limit=body.monthly_limit,
    )
    return ApiKeyOut.from_row(row, key=key).to_json()


@router.patch("")
async def update_key(
    body: UpdateApiKeyRequest,
    key_id: str | None = Query(default=None, alias="id"),
    user: dict = Depends(current_user),
    keys: ApiKeyManager = Depends(get_key_manager),
):
    key_id = _require_id(key_id)
    updated = await keys.update(
        user["id"],
        key_id,
        name=body.name,
        rate_limit=body.rate_limit,
        daily_limit=body.daily_limit,
        monthly_limit=body.monthly_limit,
    )
    if not updated:
        raise NotFoundError("API key not found")
    row = await keys.store.get_api_key(key_id)
    return {"success": True, "key": ApiKeyOut.from_row(row).to_json()}


@router.delete("")
async def delete_key(
    key_id: str | None = Query(default=None, alias="id"),
    user: dict = Depends(current_user),
    keys: ApiKeyManager = Depends(get_key_manager),
):
    key_id = _require_id(key_id)
    if not await keys.delete(user["id"], key_id):
        raise NotFoundError("API key not found")
    return {"success": True}


@router.post("/revoke")
async def revoke_key(
    key_id: str | None = Query(default=None, alias="id"),
    user: dict = Depends(current_user),
    keys: ApiKeyManager = Depends(get_key_manager),
):
    """Deactivate a key without deleting its usage history."""
    key_id = _require_id(key_id)
    if not await keys.revoke(user["id"], key_id):
        raise NotFoundError("API key not found")
    return {"success": True}

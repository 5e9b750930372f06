"""HTTP route modules, one APIRouter per resource."""

from . import auth, billing, health, keys, rpc, user, webhooks

__all__ = ["auth", "billing", "health", "keys", "rpc", "user", "webhooks"]

import functools

import httpx
import pytest
import pytest_asyncio
import respx
import structlog
from fastapi.testclient import TestClient

from rpc_dashboard.api import create_app
from rpc_dashboard.config import Settings
from rpc_dashboard.store import AsyncStore

BACKEND_URL = "http://backend.test"
FALLBACK_URLS = ["https://rpc-a.test", "https://rpc-b.test"]

RPC_RESULT = {"jsonrpc": "2.0", "id": 1, "result": 12345}


@pytest.fixture(autouse=True)
def reset_structlog():
    yield
    structlog.reset_defaults()


def make_settings(**overrides) -> Settings:
    values = {
        "db_path": ":memory:",
        "rpc_backend_url": BACKEND_URL,
        "rpc_admin_key": "admin-key",
        "fallback_rpc_urls": list(FALLBACK_URLS),
        "privy_app_id": None,
        "privy_app_secret": None,
        "privy_verification_key": None,
        "stripe_secret_key": None,
        "stripe_webhook_secret": None,
        "app_url": "http://dashboard.test",
        "log_level": "WARNING",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings():
    """Development-mode settings: no Privy, no Stripe, in-memory database."""
    return make_settings()


@pytest.fixture
def rpc_mock():
    """Backend down, both fallback endpoints answering every call.

    Routes are named "backend", "rpc-a" and "rpc-b" so tests can change them.
    """
    with respx.mock(assert_all_called=False) as mock:
        mock.route(host="backend.test", name="backend").mock(side_effect=httpx.ConnectError("backend down"))
        mock.post(host="rpc-a.test", name="rpc-a").mock(return_value=httpx.Response(200, json=RPC_RESULT))
        mock.post(host="rpc-b.test", name="rpc-b").mock(return_value=httpx.Response(200, json=RPC_RESULT))
        yield mock


@pytest.fixture
def client(settings, rpc_mock):
    with TestClient(create_app(settings)) as client:
        yield client


@pytest.fixture
def call(client):
    """Run a coroutine function on the app's event loop: call(store.method, *args, **kwargs)."""

    def _call(fn, *args, **kwargs):
        return client.portal.call(functools.partial(fn, *args, **kwargs))

    return _call


def auth(privy_id: str = "did:privy:alice") -> dict:
    """Bearer header for development mode, where the token is the Privy user ID."""
    return {"Authorization": f"Bearer {privy_id}"}


@pytest_asyncio.fixture
async def store():
    store = AsyncStore(":memory:")
    await store.connect()
    await store.init_db()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def user(store):
    return await store.create_user(privy_id="did:privy:alice", email="alice@example.com", name="Alice")

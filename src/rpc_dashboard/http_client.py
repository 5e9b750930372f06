"""Outbound HTTP client shared by the proxy, the health prober and the admin clients.

One ``httpx.AsyncClient`` is built per app and closed on shutdown. Per-call
timeouts (proxy forward, health probe, backend admin) are passed at the call
site; the client defaults only bound the worst case.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx

from . import __version__
from .logging_config import get_logger

logger = get_logger(__name__)

USER_AGENT = f"rpc-dashboard/{__version__}"

DEFAULT_TIMEOUT = httpx.Timeout(30.0, connect=5.0)

# JSON-RPC traffic to a handful of hosts: keep connections warm
DEFAULT_LIMITS = httpx.Limits(
    max_connections=100,
    max_keepalive_connections=20,
    keepalive_expiry=30.0,
)

JSON_HEADERS = {
    "Accept": "application/json",
    "Content-Type": "application/json",
    "User-Agent": USER_AGENT,
}


def build_http_client(
    timeout: httpx.Timeout | float | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Build the shared client. The caller owns it and must close it.

    Args:
        timeout: Overall timeout (defaults to 30s with a 5s connect timeout)
        transport: Optional transport, e.g. ``httpx.MockTransport`` in tests
    """
    client = httpx.AsyncClient(
        timeout=timeout if timeout is not None else DEFAULT_TIMEOUT,
        limits=DEFAULT_LIMITS,
        headers=JSON_HEADERS,
        transport=transport,
    )
    logger.debug("http_client_created", user_agent=USER_AGENT)
    return client


@asynccontextmanager
async def create_http_client(
    timeout: httpx.Timeout | float | None = None,
) -> AsyncIterator[httpx.AsyncClient]:
    """Client scoped to a block, for one-off commands.

    Example:
        async with create_http_client() as client:
            await LoadBalancer(url, fallbacks, client).check_all()
    """
    client = build_http_client(timeout)
    try:
        yield client
    finally:
        await client.aclose()
        logger.debug("http_client_closed")

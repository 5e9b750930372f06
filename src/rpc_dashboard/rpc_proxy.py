"""JSON-RPC forwarding for the dashboard's ``/api/rpc`` endpoint.

Requests are authenticated by API key (metered) or by a dashboard bearer
token (rate limited only), then forwarded one by one to the endpoint the
load balancer picks.
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from .api_keys import ApiKeyManager
from .errors import AuthenticationError
from .load_balancer import LoadBalancer, probe
from .logging_config import get_logger
from .models import INTERNAL_ERROR, INVALID_REQUEST, RpcRequest, rpc_error
from .privy import PrivyClient
from .rate_limiter import UsageTracker
from .store import AsyncStore

logger = get_logger(__name__)

DASHBOARD_RATE_LIMIT = 100
DASHBOARD_DAILY_LIMIT = 100_000
DASHBOARD_MONTHLY_LIMIT = 1_000_000

DEV_DASHBOARD_USER = "dashboard-user"


@dataclass(frozen=True)
class Caller:
    """Authenticated identity of a proxy request."""

    user_id: str
    rate_limit: int
    daily_limit: int
    monthly_limit: int
    key_id: str | None = None

    @property
    def metered(self) -> bool:
        return self.key_id is not None


class UpstreamError(Exception):
    """Every endpoint tried for a request failed."""


def _size(value: Any) -> int:
    return len(json.dumps(value, separators=(",", ":")))


class RpcProxy:
    def __init__(
        self,
        balancer: LoadBalancer,
        client: httpx.AsyncClient,
        keys: ApiKeyManager,
        usage: UsageTracker,
        store: AsyncStore,
        privy: PrivyClient | None = None,
        request_timeout: float = 30.0,
    ):
        self.balancer = balancer
        self.client = client
        self.keys = keys
        self.usage = usage
        self.store = store
        self.privy = privy
        self.request_timeout = request_timeout

    async def authenticate(self, api_key: str | None, authorization: str | None) -> Caller | None:
        """Resolve the caller from an ``x-api-key`` header or a bearer token.

        Returns None when neither identifies a caller.
        """
        if api_key:
            verified = await self.keys.verify(api_key)
            if verified is None:
                return None
            return Caller(
                user_id=verified.user_id,
                key_id=verified.key_id,
                rate_limit=verified.rate_limit,
                daily_limit=verified.daily_limit,
                monthly_limit=verified.monthly_limit,
            )

        if not authorization or not authorization.startswith("Bearer "):
            return None

        if self.privy is None:
            user_id = DEV_DASHBOARD_USER
        else:
            try:
                claims = await self.privy.verify_auth_token(authorization.removeprefix("Bearer ").strip())
            except AuthenticationError:
                return None
            user_id = (await self.store.ensure_user(claims.user_id))["id"]

        return Caller(
            user_id=user_id,
            rate_limit=DASHBOARD_RATE_LIMIT,
            daily_limit=DASHBOARD_DAILY_LIMIT,
            monthly_limit=DASHBOARD_MONTHLY_LIMIT,
        )

    async def _post(self, url: str, payload: dict) -> httpx.Response:
        return await self.client.post(url, json=payload, timeout=self.request_timeout)

    async def forward(self, payload: dict) -> tuple[Any, str]:
        """Send one request upstream, retrying once on the first fallback.

        Returns:
            Tuple of (decoded response, endpoint that answered)

        Raises:
            UpstreamError: If no endpoint returned a successful response
        """
        endpoint = self.balancer.next_endpoint()
        try:
            response = await self._post(endpoint, payload)
        except httpx.HTTPError as e:
            self.balancer.mark_unhealthy(endpoint)
            raise UpstreamError(str(e) or type(e).__name__) from e

        if not response.is_success:
            logger.warning("rpc_upstream_error", endpoint=endpoint, status=response.status_code)
            self.balancer.mark_unhealthy(endpoint)
            endpoint = self.balancer.fallback_urls[0]
            try:
                response = await self._post(endpoint, payload)
            except httpx.HTTPError as e:
                raise UpstreamError(str(e) or type(e).__name__) from e
            if not response.is_success:
                raise UpstreamError("All endpoints failed")

        try:
            return response.json(), endpoint
        except ValueError as e:
            raise UpstreamError("Invalid JSON from upstream") from e

    async def _handle_one(self, payload: Any, caller: Caller) -> Any:
        try:
            request = RpcRequest.model_validate(payload)
        except PydanticValidationError:
            request_id = payload.get("id") if isinstance(payload, dict) else None
            return rpc_error(request_id, INVALID_REQUEST, "Invalid Request")

        start = time.perf_counter()
        endpoint = None
        try:
            result, endpoint = await self.forward(payload)
            success = not (isinstance(result, dict) and "error" in result)
        except UpstreamError as e:
            logger.error("rpc_request_failed", method=request.method, error=str(e))
            result = rpc_error(request.id, INTERNAL_ERROR, "Internal error", str(e))
            success = False

        if caller.metered:
            await self.usage.record(
                user_id=caller.user_id,
                key_id=caller.key_id,
                method=request.method,
                success=success,
                latency_ms=int((time.perf_counter() - start) * 1000),
                bytes_in=_size(payload),
                bytes_out=_size(result),
                endpoint=endpoint,
            )
        return result

    async def handle(self, body: Any, caller: Caller) -> Any:
        """Process a single request or a batch. A batch yields a list of responses."""
        if isinstance(body, list):
            return [await self._handle_one(item, caller) for item in body]
        return await self._handle_one(body, caller)

    async def probe_all(self, timeout: float) -> dict:
        """Probe the backend and every fallback concurrently.

        Read-only: the balancer's health cache and alert history are left untouched.
        """
        urls = self.balancer.endpoints
        results = dict(zip(urls, await asyncio.gather(*(probe(self.client, url, timeout) for url in urls))))
        endpoints = {
            url: {"status": "healthy" if health.healthy else "unhealthy", "latency": health.latency_ms}
            for url, health in results.items()
        }
        operational = any(health.healthy for health in results.values())
        return {
            "status": "operational" if operational else "degraded",
            "endpoints": endpoints,
            "timestamp": datetime.now(UTC).isoformat(),
        }

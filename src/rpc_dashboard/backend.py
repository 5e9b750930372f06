"""Client for the Multi-RPC backend admin API.

The backend is the real gateway; this module only reads its health, metrics
and configuration and pushes configuration changes. Every failure surfaces
as ``BackendUnavailableError`` so routes can fall back to local data.
"""

from __future__ import annotations

from typing import Any

import httpx

from .errors import BackendUnavailableError
from .logging_config import get_logger
from .models import EndpointConfig, RpcConfig
from .retry_policy import TransientHTTPError, backend_retry, check_response_for_retry

logger = get_logger(__name__)

TOP_METHODS = 5


class BackendClient:
    """Thin async wrapper over the backend's admin endpoints."""

    def __init__(self, base_url: str, admin_key: str, client: httpx.AsyncClient, timeout: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.admin_key = admin_key
        self.client = client
        self.timeout = timeout

    @backend_retry
    async def _send(self, method: str, path: str, payload: Any = None) -> httpx.Response:
        response = await self.client.request(
            method,
            f"{self.base_url}{path}",
            json=payload,
            headers={"X-API-Key": self.admin_key},
            timeout=self.timeout,
        )
        check_response_for_retry(response)
        return response

    async def _request(self, method: str, path: str, payload: Any = None) -> Any:
        try:
            response = await self._send(method, path, payload)
        except (TransientHTTPError, httpx.HTTPError) as e:
            logger.warning("backend_request_failed", method=method, path=path, error=str(e))
            raise BackendUnavailableError("Multi-RPC backend unavailable", {"path": path}) from e

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise BackendUnavailableError("Multi-RPC backend returned invalid JSON", {"path": path}) from e

    async def health(self) -> dict:
        return await self._request("GET", "/health")

    async def endpoints(self) -> list[dict]:
        return await self._request("GET", "/endpoints")

    async def metrics(self) -> dict:
        return await self._request("GET", "/metrics")

    async def stats(self) -> dict:
        return await self._request("GET", "/stats")

    async def get_config(self) -> dict:
        return await self._request("GET", "/config")

    async def update_config(self, config: dict) -> None:
        """Push a new routing configuration and ask the backend to reload it."""
        await self._request("POST", "/config", config)
        await self._request("POST", "/config/reload")
        logger.info("backend_config_updated", endpoints=len(config.get("endpoints", [])))

    async def ping(self) -> bool:
        """Return True when the backend health endpoint answers."""
        try:
            await self.health()
        except BackendUnavailableError:
            return False
        return True


def default_config(fallback_urls: list[str]) -> RpcConfig:
    """Routing configuration used when the backend cannot provide one."""
    return RpcConfig(
        endpoints=[EndpointConfig(url=url, priority=i + 1) for i, url in enumerate(fallback_urls)],
    )


def summarize_endpoints(health: dict, endpoints: list[dict]) -> dict:
    """Convert backend health and endpoint listings to the dashboard format."""
    details = []
    for ep in endpoints:
        item = {
            "url": ep.get("url"),
            "healthy": ep.get("status") == "Healthy",
            "latency": ep.get("avg_response_time") or 0,
            "success_rate": ep.get("success_rate") or 0,
            "requests_total": ep.get("total_requests") or 0,
            "region": ep.get("region") or "Unknown",
        }
        if ep.get("status") == "Unhealthy":
            item["error"] = ep.get("last_error")
        details.append(item)

    count = len(details)
    return {
        "endpoints": details,
        "overall_health": {
            "healthy_endpoints": sum(1 for ep in details if ep["healthy"]),
            "total_endpoints": count,
            "average_latency": round(sum(ep["latency"] for ep in details) / count) if count else 0,
            "total_requests": sum(ep["requests_total"] for ep in details),
            "success_rate": round(sum(ep["success_rate"] for ep in details) / count, 1) if count else 0,
            "system_status": health.get("status") or "healthy",
            "uptime": health.get("uptime") or 0,
        },
    }


def methods_breakdown(methods: dict[str, int]) -> list[dict]:
    """Rank methods by count with integer percentages.

    More than five methods collapse into the top five plus an ``Others`` row.
    """
    total = sum(methods.values())
    ranked = sorted(
        (
            {"method": name, "count": count, "percentage": round(count / total * 100) if total else 0}
            for name, count in methods.items()
        ),
        key=lambda m: m["count"],
        reverse=True,
    )
    if len(ranked) <= TOP_METHODS:
        return ranked

    rest = ranked[TOP_METHODS:]
    others = {
        "method": "Others",
        "count": sum(m["count"] for m in rest),
        "percentage": sum(m["percentage"] for m in rest),
    }
    return [*ranked[:TOP_METHODS], others]

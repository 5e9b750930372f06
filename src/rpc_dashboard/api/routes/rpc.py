"""JSON-RPC proxy plus endpoint configuration and monitoring routes.

Monitoring routes read from the Multi-RPC backend and fall back to local
data (load balancer probes, recorded usage, recorded alerts) when it is down.
"""

from __future__ import annotations

import json
import time
from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import urlparse

from fastapi import APIRouter, Body, Depends, Header, Query, Request
from fastapi.responses import JSONResponse

from ...backend import BackendClient, default_config, methods_breakdown, summarize_endpoints
from ...config import Settings
from ...errors import BackendUnavailableError, NotFoundError, ValidationError
from ...load_balancer import LoadBalancer, probe
from ...logging_config import get_logger
from ...models import (
    AUTH_REQUIRED,
    INTERNAL_ERROR,
    INVALID_REQUEST,
    LIMIT_EXCEEDED,
    PARSE_ERROR,
    CustomEndpointOut,
    CustomEndpointRequest,
    rpc_error,
)
from ...privy import AuthClaims
from ...rate_limiter import RateLimiter, UsageTracker
from ...rpc_proxy import RpcProxy
from ...store import AsyncStore
from ..deps import (
    current_user,
    get_backend,
    get_balancer,
    get_claims,
    get_proxy,
    get_rate_limiter,
    get_settings,
    get_store,
    get_usage_tracker,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/api/rpc", tags=["rpc"])

TIME_RANGES = {"24h": timedelta(hours=24), "7d": timedelta(days=7), "30d": timedelta(days=30)}


def _rpc_response(content: Any, status_code: int = 200, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(content, status_code=status_code, headers=headers)


# =============================================================================
# PROXY
# =============================================================================


@router.post("")
async def proxy_rpc(
    request: Request,
    x_api_key: str | None = Header(default=None, alias="x-api-key"),
    authorization: str | None = Header(default=None),
    proxy: RpcProxy = Depends(get_proxy),
    limiter: RateLimiter = Depends(get_rate_limiter),
    usage: UsageTracker = Depends(get_usage_tracker),
):
    """Authenticate, rate limit and forward a JSON-RPC request or batch."""
    start = time.perf_counter()
    try:
        caller = await proxy.authenticate(x_api_key, authorization)
        if caller is None:
            return _rpc_response(
                rpc_error(
                    None,
                    AUTH_REQUIRED,
                    "Authentication required. Please provide an API key via x-api-key header.",
                ),
                status_code=401,
            )

        limit = limiter.check(caller.user_id, caller.rate_limit, 1)
        headers = limiter.headers(limit)
        if not limit.allowed:
            return _rpc_response(rpc_error(None, LIMIT_EXCEEDED, "Rate limit exceeded"), 429, headers)

        if caller.metered:
            quota = await usage.check(caller.user_id, caller.key_id, caller.daily_limit, caller.monthly_limit)
            if not quota.allowed:
                data = {"dailyUsage": quota.daily_usage, "monthlyUsage": quota.monthly_usage}
                return _rpc_response(rpc_error(None, LIMIT_EXCEEDED, "Usage limit exceeded", data), 429, headers)

        try:
            body = json.loads(await request.body())
        except ValueError:
            return _rpc_response(rpc_error(None, PARSE_ERROR, "Parse error"), 400, headers)
        if not isinstance(body, (dict, list)) or body == []:
            return _rpc_response(rpc_error(None, INVALID_REQUEST, "Invalid Request"), 400, headers)

        result = await proxy.handle(body, caller)
    except Exception:
        logger.exception("rpc_handler_error")
        return _rpc_response(rpc_error(None, INTERNAL_ERROR, "Internal server error"), 500)

    headers["X-Response-Time"] = f"{int((time.perf_counter() - start) * 1000)}ms"
    return _rpc_response(result, headers=headers)


@router.get("")
async def proxy_status(proxy: RpcProxy = Depends(get_proxy), settings: Settings = Depends(get_settings)):
    """Probe the backend and fallback endpoints."""
    return await proxy.probe_all(settings.monitor_probe_timeout)


# =============================================================================
# CONFIGURATION
# =============================================================================


@router.get("/config")
async def get_config(
    claims: AuthClaims = Depends(get_claims),
    backend: BackendClient = Depends(get_backend),
    settings: Settings = Depends(get_settings),
):
    try:
        return await backend.get_config()
    except BackendUnavailableError:
        logger.info("backend_config_unavailable", detail="serving default configuration")
        return default_config(settings.fallback_rpc_urls).model_dump(mode="json", by_alias=True)


@router.post("/config")
async def update_config(
    config: Any = Body(...),
    claims: AuthClaims = Depends(get_claims),
    backend: BackendClient = Depends(get_backend),
):
    if not isinstance(config, dict) or not isinstance(config.get("endpoints"), list):
        raise ValidationError("Invalid configuration format")

    try:
        await backend.update_config(config)
    except BackendUnavailableError:
        return {
            "success": True,
            "message": "Configuration updated (local only)",
            "warning": "Backend not available, changes are not persisted",
        }
    return {"success": True, "message": "Configuration updated"}


# =============================================================================
# CUSTOM ENDPOINTS
# =============================================================================


def _is_http_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


@router.get("/endpoints")
async def list_endpoints(user: dict = Depends(current_user), store: AsyncStore = Depends(get_store)):
    rows = await store.list_custom_endpoints(user["id"])
    return {"endpoints": [CustomEndpointOut.from_row(row).to_json() for row in rows]}


@router.post("/endpoints")
async def add_endpoint(
    body: CustomEndpointRequest,
    request: Request,
    user: dict = Depends(current_user),
    store: AsyncStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    """Register a custom endpoint after probing it once."""
    url, name = body.url.strip(), body.name.strip()
    if not url or not name:
        raise ValidationError("URL and name are required")
    if not _is_http_url(url):
        raise ValidationError("Invalid URL format")

    result = await probe(request.app.state.http, url, settings.monitor_probe_timeout)
    row = await store.add_custom_endpoint(
        user_id=user["id"],
        url=url,
        name=name,
        region=body.region or "Custom",
        healthy=result.healthy,
        latency_ms=result.latency_ms if result.healthy else 0,
    )
    logger.info("custom_endpoint_added", user_id=user["id"], url=url, healthy=result.healthy)
    return CustomEndpointOut.from_row(row).to_json()


@router.delete("/endpoints")
async def delete_endpoint(
    endpoint_id: str | None = Query(default=None, alias="id"),
    user: dict = Depends(current_user),
    store: AsyncStore = Depends(get_store),
):
    if not endpoint_id:
        raise ValidationError("Endpoint ID is required")
    if not await store.delete_custom_endpoint(user["id"], endpoint_id):
        raise NotFoundError("Endpoint not found")
    return {"success": True}


# =============================================================================
# MONITORING
# =============================================================================


def _success_rate(requests: int, errors: int) -> float:
    return round((requests - errors) / requests * 100, 1) if requests else 0.0


def _avg_latency(total_latency_ms: int, requests: int) -> int:
    return round(total_latency_ms / requests) if requests else 0


async def _local_endpoint_health(balancer: LoadBalancer, store: AsyncStore, user_id: str) -> dict:
    """Endpoint health from local probes, in the backend's endpoint format."""
    results = await balancer.check_all()
    since = datetime.now(UTC).date() - timedelta(days=1)
    performance = {row["endpoint"]: row for row in await store.endpoint_performance(user_id, since)}

    endpoints = []
    for url, health in results.items():
        stats = performance.get(url)
        requests = int(stats["requests"]) if stats else 0
        endpoints.append(
            {
                "url": url,
                "status": "Healthy" if health.healthy else "Unhealthy",
                "avg_response_time": health.latency_ms or 0,
                "success_rate": _success_rate(requests, int(stats["errors"])) if stats else 0,
                "total_requests": requests,
                "region": "Backend" if url == balancer.backend_url else "Fallback",
                "last_error": None if health.healthy else "Health check failed",
            }
        )
    status = "healthy" if any(h.healthy for h in results.values()) else "degraded"
    return summarize_endpoints({"status": status}, endpoints)


@router.get("/health")
async def rpc_health(
    user: dict = Depends(current_user),
    backend: BackendClient = Depends(get_backend),
    balancer: LoadBalancer = Depends(get_balancer),
    store: AsyncStore = Depends(get_store),
):
    try:
        health = await backend.health()
        endpoints = await backend.endpoints()
    except BackendUnavailableError:
        logger.info("backend_health_unavailable", detail="probing fallback endpoints")
        return await _local_endpoint_health(balancer, store, user["id"])
    return summarize_endpoints(health or {}, endpoints or [])


def _bucket_time(bucket: dict) -> datetime:
    day = datetime.fromisoformat(bucket["date"])
    return day.replace(hour=bucket.get("hour") or 0, tzinfo=UTC)


async def _recent_buckets(store: AsyncStore, user_id: str, since: datetime, hourly: bool) -> list[dict]:
    """Usage buckets since ``since``; hourly buckets are trimmed to the exact window."""
    buckets = await store.usage_timeline(user_id, since.date(), hourly=hourly)
    if not hourly:
        return buckets
    floor = since.replace(minute=0, second=0, microsecond=0)
    return [b for b in buckets if _bucket_time(b) >= floor]


async def _local_stats(store: AsyncStore, user_id: str) -> dict:
    day_ago = datetime.now(UTC) - timedelta(hours=24)
    buckets = await _recent_buckets(store, user_id, day_ago, hourly=True)

    requests = sum(b["requests"] for b in buckets)
    errors = sum(b["errors"] for b in buckets)
    latest = buckets[-1] if buckets else None
    performance = await store.endpoint_performance(user_id, day_ago.date())

    return {
        "current": {
            "requests_per_second": round(latest["requests"] / 3600, 2) if latest else 0,
            "active_connections": 0,
            "average_latency": _avg_latency(latest["total_latency_ms"], latest["requests"]) if latest else 0,
            "error_rate": round(errors / requests * 100, 2) if requests else 0,
        },
        "last_hour": [],
        "last_24h": [
            {
                "timestamp": _bucket_time(b).isoformat(),
                "requests": b["requests"],
                "success_rate": _success_rate(b["requests"], b["errors"]),
                "latency": _avg_latency(b["total_latency_ms"], b["requests"]),
            }
            for b in buckets
        ],
        "endpoints_performance": [
            {
                "endpoint": row["endpoint"],
                "requests": row["requests"],
                "success_rate": _success_rate(row["requests"], row["errors"]),
                "avg_latency": _avg_latency(row["total_latency_ms"], row["requests"]),
            }
            for row in performance
        ],
        "methods_breakdown": methods_breakdown(await store.method_counts(user_id, day_ago.date())),
    }


@router.get("/stats")
async def rpc_stats(
    user: dict = Depends(current_user),
    backend: BackendClient = Depends(get_backend),
    store: AsyncStore = Depends(get_store),
):
    try:
        metrics = await backend.metrics() or {}
    except BackendUnavailableError:
        logger.info("backend_metrics_unavailable", detail="using recorded usage")
        return await _local_stats(store, user["id"])

    try:
        stats = await backend.stats() or {}
    except BackendUnavailableError:
        stats = {}

    series = metrics.get("time_series") or {}
    return {
        "current": {
            "requests_per_second": metrics.get("requests_per_second", 0),
            "active_connections": metrics.get("active_connections", 0),
            "average_latency": metrics.get("average_latency", 0),
            "error_rate": metrics.get("error_rate", 0),
        },
        "last_hour": series.get("last_hour") or [],
        "last_24h": series.get("last_24h") or [],
        "endpoints_performance": metrics.get("endpoints") or stats.get("endpoints") or [],
        "methods_breakdown": methods_breakdown(metrics.get("methods") or {}),
    }


@router.get("/analytics")
async def rpc_analytics(
    time_range: str = Query(default="24h", alias="timeRange"),
    user: dict = Depends(current_user),
    store: AsyncStore = Depends(get_store),
):
    """Request analytics for the caller over 24h, 7d or 30d."""
    if time_range not in TIME_RANGES:
        raise ValidationError("Invalid time range", {"allowed": list(TIME_RANGES)})

    window = TIME_RANGES[time_range]
    since = datetime.now(UTC) - window
    buckets = await _recent_buckets(store, user["id"], since, hourly=time_range == "24h")

    total = sum(b["requests"] for b in buckets)
    errors = sum(b["errors"] for b in buckets)
    latency_total = sum(b["total_latency_ms"] for b in buckets)
    performance = await store.endpoint_performance(user["id"], since.date())

    return {
        "timeRange": time_range,
        "totalRequests": total,
        "successRate": _success_rate(total, errors),
        "averageLatency": _avg_latency(latency_total, total),
        "errorRate": round(errors / total * 100, 1) if total else 0,
        "requestsPerSecond": round(total / window.total_seconds(), 2),
        "topMethods": methods_breakdown(await store.method_counts(user["id"], since.date())),
        "timeline": [
            {
                "time": _bucket_time(b).isoformat(),
                "requests": b["requests"],
                "errors": b["errors"],
                "latency": _avg_latency(b["total_latency_ms"], b["requests"]),
            }
            for b in buckets
        ],
        "endpoints": [
            {
                "url": row["endpoint"],
                "requests": row["requests"],
                "successRate": _success_rate(row["requests"], row["errors"]),
                "avgLatency": _avg_latency(row["total_latency_ms"], row["requests"]),
            }
            for row in performance
        ],
    }


@router.get("/alerts")
async def rpc_alerts(claims: AuthClaims = Depends(get_claims), store: AsyncStore = Depends(get_store)):
    """Recent endpoint health transitions."""
    rows = await store.list_endpoint_alerts()
    return {
        "alerts": [
            {
                "id": str(row["id"]),
                "type": row["type"],
                "message": row["message"],
                "timestamp": row["created_at"],
                "endpoint": row["endpoint"],
            }
            for row in rows
        ]
    }

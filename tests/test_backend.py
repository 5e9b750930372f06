import json

import httpx
import pytest
import pytest_asyncio
import respx
from tenacity import Future, RetryCallState

from rpc_dashboard.backend import BackendClient, default_config, methods_breakdown, summarize_endpoints
from rpc_dashboard.errors import BackendUnavailableError
from rpc_dashboard.retry_policy import MAX_WAIT_SECONDS, RateLimitError, TransientHTTPError, wait_for_backend

BASE_URL = "http://backend.test"


@pytest_asyncio.fixture
async def backend():
    async with httpx.AsyncClient() as client:
        yield BackendClient(BASE_URL, "admin-key", client)


@pytest.mark.asyncio
async def test_health_sends_admin_key(backend):
    async with respx.mock(base_url=BASE_URL) as mock:
        route = mock.get("/health").mock(return_value=httpx.Response(200, json={"status": "healthy"}))
        assert await backend.health() == {"status": "healthy"}
    assert route.calls.last.request.headers["X-API-Key"] == "admin-key"


@pytest.mark.asyncio
async def test_update_config_posts_and_reloads(backend):
    config = {"endpoints": [{"url": "https://rpc-a.test", "weight": 1}]}
    async with respx.mock(base_url=BASE_URL) as mock:
        save = mock.post("/config").mock(return_value=httpx.Response(200, json={"ok": True}))
        reload = mock.post("/config/reload").mock(return_value=httpx.Response(204))
        await backend.update_config(config)

    assert json.loads(save.calls.last.request.content) == config
    assert reload.called


@pytest.mark.asyncio
async def test_server_errors_are_retried(backend):
    async with respx.mock(base_url=BASE_URL) as mock:
        route = mock.get("/metrics").mock(
            side_effect=[httpx.Response(503), httpx.Response(200, json={"requests_per_second": 4})]
        )
        assert await backend.metrics() == {"requests_per_second": 4}
    assert route.call_count == 2


@pytest.mark.asyncio
async def test_rate_limit_honours_retry_after(backend):
    async with respx.mock(base_url=BASE_URL) as mock:
        route = mock.get("/endpoints").mock(
            side_effect=[httpx.Response(429, headers={"Retry-After": "0"}), httpx.Response(200, json=[])]
        )
        assert await backend.endpoints() == []
    assert route.call_count == 2


@pytest.mark.asyncio
async def test_client_errors_are_not_retried(backend):
    async with respx.mock(base_url=BASE_URL) as mock:
        route = mock.get("/stats").mock(return_value=httpx.Response(404))
        with pytest.raises(BackendUnavailableError):
            await backend.stats()
    assert route.call_count == 1


@pytest.mark.asyncio
async def test_unreachable_backend(backend):
    async with respx.mock(base_url=BASE_URL) as mock:
        mock.get("/health").mock(side_effect=httpx.ConnectError("refused"))
        with pytest.raises(BackendUnavailableError) as exc_info:
            await backend.health()
        assert exc_info.value.details == {"path": "/health"}
        assert await backend.ping() is False


@pytest.mark.asyncio
async def test_invalid_json(backend):
    async with respx.mock(base_url=BASE_URL) as mock:
        mock.get("/config").mock(return_value=httpx.Response(200, text="<html>"))
        with pytest.raises(BackendUnavailableError, match="invalid JSON"):
            await backend.get_config()


def test_default_config_orders_fallbacks_by_priority():
    config = default_config(["https://a", "https://b"]).model_dump(mode="json", by_alias=True)
    assert [(e["url"], e["priority"]) for e in config["endpoints"]] == [("https://a", 1), ("https://b", 2)]
    assert config["routing_strategy"] == "health_based"


def test_summarize_endpoints():
    health = {"status": "healthy", "uptime": 3600}
    endpoints = [
        {
            "url": "https://a",
            "status": "Healthy",
            "avg_response_time": 100,
            "success_rate": 99.0,
            "total_requests": 10,
            "region": "US",
        },
        {
            "url": "https://b",
            "status": "Unhealthy",
            "avg_response_time": 300,
            "success_rate": 50.0,
            "total_requests": 5,
            "last_error": "timeout",
        },
    ]

    summary = summarize_endpoints(health, endpoints)

    a, b = summary["endpoints"]
    assert a == {
        "url": "https://a",
        "healthy": True,
        "latency": 100,
        "success_rate": 99.0,
        "requests_total": 10,
        "region": "US",
    }
    assert b["healthy"] is False
    assert b["region"] == "Unknown"
    assert b["error"] == "timeout"
    assert summary["overall_health"] == {
        "healthy_endpoints": 1,
        "total_endpoints": 2,
        "average_latency": 200,
        "total_requests": 15,
        "success_rate": 74.5,
        "system_status": "healthy",
        "uptime": 3600,
    }


def test_summarize_no_endpoints():
    overall = summarize_endpoints({}, [])["overall_health"]
    assert overall["total_endpoints"] == 0
    assert overall["average_latency"] == 0
    assert overall["success_rate"] == 0


def test_methods_breakdown_collapses_tail():
    methods = {"getSlot": 50, "getBalance": 20, "getBlock": 10, "getTransaction": 8, "getHealth": 6, "a": 4, "b": 2}
    ranked = methods_breakdown(methods)

    assert [m["method"] for m in ranked] == ["getSlot", "getBalance", "getBlock", "getTransaction", "getHealth", "Others"]
    assert ranked[0]["percentage"] == 50
    assert ranked[-1] == {"method": "Others", "count": 6, "percentage": 6}


def test_methods_breakdown_empty():
    assert methods_breakdown({}) == []


def _failed_attempt(exc: Exception) -> RetryCallState:
    state = RetryCallState(retry_object=None, fn=None, args=(), kwargs={})
    outcome = Future(state.attempt_number)
    outcome.set_exception(exc)
    state.outcome = outcome
    return state


def test_retry_wait_uses_retry_after_within_cap():
    assert wait_for_backend(_failed_attempt(RateLimitError("429", 429, retry_after=0.5))) == 0.5
    assert wait_for_backend(_failed_attempt(RateLimitError("429", 429, retry_after=120))) == MAX_WAIT_SECONDS

    backoff = wait_for_backend(_failed_attempt(TransientHTTPError("503", 503)))
    assert 0 <= backoff <= MAX_WAIT_SECONDS + 0.2

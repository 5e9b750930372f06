from datetime import UTC, datetime

import httpx
import pytest
import pytest_asyncio
import respx

from rpc_dashboard.api_keys import ApiKeyManager
from rpc_dashboard.load_balancer import LoadBalancer
from rpc_dashboard.models import INTERNAL_ERROR, INVALID_REQUEST
from rpc_dashboard.rate_limiter import UsageTracker
from rpc_dashboard.rpc_proxy import DEV_DASHBOARD_USER, Caller, RpcProxy, UpstreamError

BACKEND = "http://backend.test"
FALLBACKS = ["https://rpc-a.test", "https://rpc-b.test"]


def result(request_id=1, value="ok"):
    return {"jsonrpc": "2.0", "id": request_id, "result": value}


@pytest_asyncio.fixture
async def http():
    async with httpx.AsyncClient() as client:
        yield client


@pytest_asyncio.fixture
async def proxy(store, http):
    balancer = LoadBalancer(BACKEND, FALLBACKS, http)
    proxy = RpcProxy(
        balancer=balancer,
        client=http,
        keys=ApiKeyManager(store),
        usage=UsageTracker(store),
        store=store,
    )
    yield proxy
    await balancer.close()


def backend_down():
    respx.route(host="backend.test").mock(side_effect=httpx.ConnectError("down"))


@pytest.mark.asyncio
@respx.mock
async def test_forward_uses_picked_endpoint(proxy):
    backend_down()
    respx.post(host="rpc-a.test").mock(return_value=httpx.Response(200, json=result()))

    response, endpoint = await proxy.forward({"jsonrpc": "2.0", "id": 1, "method": "getSlot"})
    assert response == result()
    assert endpoint == FALLBACKS[0]


@pytest.mark.asyncio
@respx.mock
async def test_forward_retries_first_fallback_on_error_status(proxy):
    respx.post(host="backend.test").mock(side_effect=[httpx.Response(200), httpx.Response(502)])
    respx.post(host="rpc-a.test").mock(return_value=httpx.Response(200, json=result()))
    await proxy.balancer.check_health(BACKEND)

    response, endpoint = await proxy.forward({"jsonrpc": "2.0", "id": 1, "method": "getSlot"})

    assert response == result()
    assert endpoint == FALLBACKS[0]
    assert not proxy.balancer.snapshot()[BACKEND].healthy


@pytest.mark.asyncio
@respx.mock
async def test_forward_gives_up_when_retry_fails(proxy):
    respx.post(host="backend.test").mock(side_effect=[httpx.Response(200), httpx.Response(500)])
    respx.post(host="rpc-a.test").mock(return_value=httpx.Response(503))
    await proxy.balancer.check_health(BACKEND)

    with pytest.raises(UpstreamError, match="All endpoints failed"):
        await proxy.forward({"jsonrpc": "2.0", "id": 1, "method": "getSlot"})


@pytest.mark.asyncio
@respx.mock
async def test_forward_transport_error_marks_endpoint_unhealthy(proxy):
    backend_down()
    respx.post(host="rpc-a.test").mock(side_effect=httpx.ReadTimeout("slow"))

    with pytest.raises(UpstreamError):
        await proxy.forward({"jsonrpc": "2.0", "id": 1, "method": "getSlot"})
    assert not proxy.balancer.snapshot()[FALLBACKS[0]].healthy


@pytest.mark.asyncio
@respx.mock
async def test_handle_batch_keeps_order_and_flags_invalid_items(proxy):
    backend_down()
    respx.post(host="rpc-a.test").mock(return_value=httpx.Response(200, json=result(1, "slot")))
    respx.post(host="rpc-b.test").mock(return_value=httpx.Response(200, json=result(3, "balance")))
    caller = Caller(user_id=DEV_DASHBOARD_USER, rate_limit=100, daily_limit=100, monthly_limit=100)

    responses = await proxy.handle(
        [
            {"jsonrpc": "2.0", "id": 1, "method": "getSlot"},
            {"jsonrpc": "2.0", "id": 2},
            {"jsonrpc": "2.0", "id": 3, "method": "getBalance", "params": ["addr"]},
        ],
        caller,
    )

    assert responses[0] == result(1, "slot")
    assert responses[1]["id"] == 2
    assert responses[1]["error"]["code"] == INVALID_REQUEST
    assert responses[2] == result(3, "balance")


@pytest.mark.asyncio
@respx.mock
async def test_handle_upstream_failure_returns_internal_error(proxy):
    backend_down()
    respx.post(host="rpc-a.test").mock(side_effect=httpx.ConnectError("refused"))
    caller = Caller(user_id=DEV_DASHBOARD_USER, rate_limit=100, daily_limit=100, monthly_limit=100)

    response = await proxy.handle({"jsonrpc": "2.0", "id": 7, "method": "getSlot"}, caller)

    assert response["id"] == 7
    assert response["error"]["code"] == INTERNAL_ERROR
    assert response["error"]["message"] == "Internal error"
    assert "refused" in response["error"]["data"]


@pytest.mark.asyncio
@respx.mock
async def test_metered_requests_record_usage(proxy, store, user):
    backend_down()
    respx.post(host="rpc-a.test").mock(return_value=httpx.Response(200, json=result()))
    respx.post(host="rpc-b.test").mock(
        return_value=httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32601}})
    )
    metered = Caller(user_id=user["id"], key_id="key-1", rate_limit=10, daily_limit=100, monthly_limit=100)

    await proxy.handle({"jsonrpc": "2.0", "id": 1, "method": "getSlot"}, metered)
    await proxy.handle({"jsonrpc": "2.0", "id": 1, "method": "getSlot"}, metered)

    today = datetime.now(UTC).date()
    totals = await store.usage_totals(user["id"], today)
    assert totals["requests"] == 2
    assert totals["success_count"] == 1
    assert totals["error_count"] == 1
    assert totals["bytes_in"] > 0
    endpoints = {row["endpoint"] for row in await store.endpoint_performance(user["id"], today)}
    assert endpoints == set(FALLBACKS)


@pytest.mark.asyncio
@respx.mock
async def test_dashboard_requests_are_not_metered(proxy, store, user):
    backend_down()
    respx.post(host="rpc-a.test").mock(return_value=httpx.Response(200, json=result()))
    caller = Caller(user_id=user["id"], rate_limit=100, daily_limit=100, monthly_limit=100)

    await proxy.handle({"jsonrpc": "2.0", "id": 1, "method": "getSlot"}, caller)

    assert await store.sum_requests(user["id"], datetime.now(UTC).date()) == 0


@pytest.mark.asyncio
async def test_authenticate_with_api_key(proxy, store, user):
    row, key = await ApiKeyManager(store).create(user["id"], "Main", rate_limit=3)

    caller = await proxy.authenticate(key, None)
    assert caller.user_id == user["id"]
    assert caller.key_id == row["id"]
    assert caller.rate_limit == 3
    assert caller.metered

    # A bad key is not rescued by a bearer token
    assert await proxy.authenticate("mrpc_bad", "Bearer token") is None


@pytest.mark.asyncio
async def test_authenticate_bearer_in_development_mode(proxy):
    caller = await proxy.authenticate(None, "Bearer anything")
    assert caller.user_id == DEV_DASHBOARD_USER
    assert caller.rate_limit == 100
    assert not caller.metered

    assert await proxy.authenticate(None, None) is None
    assert await proxy.authenticate(None, "Basic abc") is None


@pytest.mark.asyncio
@respx.mock
async def test_probe_all(proxy):
    backend_down()
    respx.post(host="rpc-a.test").mock(return_value=httpx.Response(200))
    respx.post(host="rpc-b.test").mock(return_value=httpx.Response(500))

    status = await proxy.probe_all(timeout=1)

    assert status["status"] == "operational"
    assert status["endpoints"][BACKEND]["status"] == "unhealthy"
    assert status["endpoints"][FALLBACKS[0]]["status"] == "healthy"
    assert set(status["endpoints"]) == {BACKEND, *FALLBACKS}
    assert proxy.balancer.snapshot() == {}

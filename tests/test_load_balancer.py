import json
from unittest.mock import AsyncMock

import httpx
import pytest
import respx

from rpc_dashboard.load_balancer import HEALTH_REQUEST, LoadBalancer, probe

BACKEND = "http://backend.test"
FALLBACKS = ["https://rpc-a.test", "https://rpc-b.test"]


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def make_balancer(client, **kwargs) -> LoadBalancer:
    return LoadBalancer(BACKEND, FALLBACKS, client, **kwargs)


def test_requires_a_fallback():
    with pytest.raises(ValueError):
        LoadBalancer(BACKEND, [], client=None)


@pytest.mark.asyncio
async def test_probe_sends_get_health():
    async with respx.mock:
        route = respx.post(host="rpc-a.test").mock(return_value=httpx.Response(200, json={"result": "ok"}))
        async with httpx.AsyncClient() as client:
            health = await probe(client, "https://rpc-a.test", timeout=1)

    assert health.healthy
    assert health.latency_ms is not None
    assert json.loads(route.calls.last.request.content) == HEALTH_REQUEST


@pytest.mark.asyncio
async def test_probe_reports_failures_as_unhealthy():
    async with respx.mock:
        respx.post(host="rpc-a.test").mock(return_value=httpx.Response(503))
        respx.post(host="rpc-b.test").mock(side_effect=httpx.ConnectTimeout("timed out"))
        async with httpx.AsyncClient() as client:
            assert not (await probe(client, "https://rpc-a.test", timeout=1)).healthy
            assert not (await probe(client, "https://rpc-b.test", timeout=1)).healthy


@pytest.mark.asyncio
async def test_prefers_healthy_backend():
    async with respx.mock:
        respx.post(host="backend.test").mock(return_value=httpx.Response(200))
        async with httpx.AsyncClient() as client:
            balancer = make_balancer(client)
            await balancer.check_health(BACKEND)
            assert [balancer.next_endpoint() for _ in range(3)] == [BACKEND] * 3
            await balancer.close()


@pytest.mark.asyncio
async def test_rotates_fallbacks_when_backend_unhealthy():
    async with httpx.AsyncClient() as client:
        balancer = make_balancer(client)
        balancer.mark_unhealthy(BACKEND)

        picks = [balancer.next_endpoint() for _ in range(4)]
        assert picks == [FALLBACKS[0], FALLBACKS[1], FALLBACKS[0], FALLBACKS[1]]
        await balancer.close()


@pytest.mark.asyncio
async def test_skips_unhealthy_fallbacks():
    async with httpx.AsyncClient() as client:
        balancer = make_balancer(client)
        balancer.mark_unhealthy(BACKEND)
        balancer.mark_unhealthy(FALLBACKS[0])

        assert {balancer.next_endpoint() for _ in range(3)} == {FALLBACKS[1]}

        # Nothing healthy left: fall back to the first fallback
        balancer.mark_unhealthy(FALLBACKS[1])
        assert balancer.next_endpoint() == FALLBACKS[0]
        await balancer.close()


@pytest.mark.asyncio
async def test_stale_backend_health_triggers_background_probe():
    clock = FakeClock()
    async with respx.mock:
        route = respx.post(host="backend.test").mock(return_value=httpx.Response(200))
        async with httpx.AsyncClient() as client:
            balancer = make_balancer(client, cache_ttl=30, clock=clock)
            balancer.mark_unhealthy(BACKEND)

            # Fresh entry: no probe, rotate over fallbacks
            assert balancer.next_endpoint() == FALLBACKS[0]
            assert route.call_count == 0

            clock.now += 31
            assert balancer.next_endpoint() == FALLBACKS[1]
            await balancer.close()
            assert route.call_count == 1

            # The background probe found the backend healthy again
            assert balancer.next_endpoint() == BACKEND


@pytest.mark.asyncio
async def test_check_all_probes_every_endpoint():
    async with respx.mock:
        respx.post(host="backend.test").mock(side_effect=httpx.ConnectError("down"))
        respx.post(host="rpc-a.test").mock(return_value=httpx.Response(200))
        respx.post(host="rpc-b.test").mock(return_value=httpx.Response(500))
        async with httpx.AsyncClient() as client:
            results = await make_balancer(client).check_all(timeout=1)

    assert {url: h.healthy for url, h in results.items()} == {
        BACKEND: False,
        FALLBACKS[0]: True,
        FALLBACKS[1]: False,
    }


@pytest.mark.asyncio
async def test_listener_notified_on_transitions_only():
    listener = AsyncMock()
    async with respx.mock:
        respx.post(host="rpc-a.test").mock(
            side_effect=[httpx.Response(200), httpx.Response(500), httpx.Response(500), httpx.Response(200)]
        )
        async with httpx.AsyncClient() as client:
            balancer = make_balancer(client, listener=listener)
            for _ in range(4):
                await balancer.check_health(FALLBACKS[0])

    assert [c.args for c in listener.await_args_list] == [(FALLBACKS[0], False), (FALLBACKS[0], True)]


@pytest.mark.asyncio
async def test_mark_unhealthy_notifies_once():
    listener = AsyncMock()
    async with httpx.AsyncClient() as client:
        balancer = make_balancer(client, listener=listener)
        balancer.mark_unhealthy(FALLBACKS[0])
        balancer.mark_unhealthy(FALLBACKS[0])
        await balancer.close()

    listener.assert_awaited_once_with(FALLBACKS[0], False)


@pytest.mark.asyncio
async def test_listener_errors_are_contained():
    listener = AsyncMock(side_effect=RuntimeError("alert store down"))
    async with respx.mock:
        respx.post(host="rpc-a.test").mock(return_value=httpx.Response(500))
        async with httpx.AsyncClient() as client:
            health = await make_balancer(client, listener=listener).check_health(FALLBACKS[0])

    assert not health.healthy
    listener.assert_awaited_once()

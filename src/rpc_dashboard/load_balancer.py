"""In-process endpoint rotation with a health-check cache.

Used by the JSON-RPC proxy when traffic cannot go through the Multi-RPC
backend. The backend is preferred while its cached health is good; otherwise
requests rotate over the fallback endpoints.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import httpx

from .logging_config import get_logger

logger = get_logger(__name__)

HEALTH_REQUEST = {"jsonrpc": "2.0", "id": 1, "method": "getHealth"}

# Called with (url, healthy) whenever an endpoint changes state
HealthListener = Callable[[str, bool], Awaitable[None]]


@dataclass
class EndpointHealth:
    healthy: bool
    checked_at: float
    latency_ms: int | None = None


async def probe(client: httpx.AsyncClient, url: str, timeout: float) -> EndpointHealth:
    """POST a ``getHealth`` call to ``url``. Any 2xx answer counts as healthy."""
    start = time.perf_counter()
    try:
        response = await client.post(url, json=HEALTH_REQUEST, timeout=timeout)
        healthy = response.is_success
    except httpx.HTTPError as e:
        logger.debug("health_probe_failed", url=url, error=str(e))
        healthy = False
    latency_ms = int((time.perf_counter() - start) * 1000)
    return EndpointHealth(healthy=healthy, checked_at=time.time(), latency_ms=latency_ms)


class LoadBalancer:
    """Round-robin endpoint picker backed by cached health probes."""

    def __init__(
        self,
        backend_url: str,
        fallback_urls: list[str],
        client: httpx.AsyncClient,
        cache_ttl: float = 30.0,
        probe_timeout: float = 2.0,
        listener: HealthListener | None = None,
        clock: Callable[[], float] = time.time,
    ):
        if not fallback_urls:
            raise ValueError("At least one fallback endpoint is required")
        self.backend_url = backend_url
        self.fallback_urls = list(fallback_urls)
        self.client = client
        self.cache_ttl = cache_ttl
        self.probe_timeout = probe_timeout
        self.listener = listener
        self._clock = clock
        self._health: dict[str, EndpointHealth] = {}
        self._index = 0
        self._tasks: set[asyncio.Task] = set()
        self._probing: set[str] = set()

    @property
    def endpoints(self) -> list[str]:
        """Backend URL followed by the fallbacks."""
        return [self.backend_url, *self.fallback_urls]

    def next_endpoint(self) -> str:
        """Pick the URL the next request should go to.

        A stale or missing backend health entry triggers a background probe;
        the current request uses whatever is cached right now.
        """
        backend = self._health.get(self.backend_url)
        if backend is None or self._clock() - backend.checked_at > self.cache_ttl:
            self._schedule_probe(self.backend_url)

        if backend is not None and backend.healthy:
            return self.backend_url

        candidates = [
            url for url in self.fallback_urls if url not in self._health or self._health[url].healthy
        ]
        if not candidates:
            return self.fallback_urls[0]

        url = candidates[self._index % len(candidates)]
        self._index += 1
        return url

    async def check_health(self, url: str, timeout: float | None = None) -> EndpointHealth:
        """Probe ``url`` with a ``getHealth`` call and cache the result."""
        result = await probe(self.client, url, timeout or self.probe_timeout)
        health = EndpointHealth(healthy=result.healthy, checked_at=self._clock(), latency_ms=result.latency_ms)
        await self._update(url, health)
        return health

    async def check_all(self, timeout: float | None = None) -> dict[str, EndpointHealth]:
        """Probe the backend and every fallback concurrently."""
        results = await asyncio.gather(*(self.check_health(url, timeout) for url in self.endpoints))
        return dict(zip(self.endpoints, results))

    def mark_unhealthy(self, url: str) -> None:
        """Flag ``url`` as unhealthy after a failed forward."""
        previous = self._health.get(url)
        self._health[url] = EndpointHealth(healthy=False, checked_at=self._clock())
        if previous is None or previous.healthy:
            logger.warning("endpoint_marked_unhealthy", url=url)
            self._spawn(self._notify(url, False))

    def snapshot(self) -> dict[str, EndpointHealth]:
        return dict(self._health)

    async def close(self) -> None:
        """Wait for in-flight background probes to finish."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def _update(self, url: str, health: EndpointHealth) -> None:
        previous = self._health.get(url)
        self._health[url] = health
        was_healthy = previous.healthy if previous else True
        if was_healthy != health.healthy:
            logger.info("endpoint_health_changed", url=url, healthy=health.healthy)
            await self._notify(url, health.healthy)

    async def _notify(self, url: str, healthy: bool) -> None:
        if self.listener is None:
            return
        try:
            await self.listener(url, healthy)
        except Exception as e:
            logger.error("health_listener_failed", url=url, error=str(e))

    def _schedule_probe(self, url: str) -> None:
        if url in self._probing:
            return
        self._probing.add(url)
        self._spawn(self._probe(url))

    async def _probe(self, url: str) -> None:
        try:
            await self.check_health(url)
        finally:
            self._probing.discard(url)

    def _spawn(self, coro: Awaitable[None]) -> None:
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            # No running loop (synchronous caller); drop the coroutine cleanly
            coro.close()
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

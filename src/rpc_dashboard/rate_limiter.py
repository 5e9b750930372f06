"""Per-second rate limiting and daily/monthly usage quotas."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from datetime import UTC, datetime

from .logging_config import get_logger
from .models import UNLIMITED
from .store import AsyncStore

logger = get_logger(__name__)


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset: datetime
    retry_after: int | None = None


class RateLimiter:
    """Fixed-window request counter kept in process memory.

    Counters are keyed by ``identifier:window_index``, so every window starts
    from zero. Windows that have ended are purged whenever a new one opens.
    """

    def __init__(self, clock=time.time):
        self._clock = clock
        self._windows: dict[str, tuple[int, float]] = {}

    def check(self, identifier: str, limit: int, window: int = 1) -> RateLimitResult:
        """Count one request against ``identifier`` and report whether it is allowed."""
        now = self._clock()
        reset_at = now + window
        bucket = f"{identifier}:{math.floor(now / window)}"

        count, bucket_reset = self._windows.get(bucket, (0, None))
        if bucket_reset is None:
            bucket_reset = reset_at
            self._purge(now)

        count += 1
        self._windows[bucket] = (count, bucket_reset)

        allowed = count <= limit
        return RateLimitResult(
            allowed=allowed,
            limit=limit,
            remaining=max(0, limit - count),
            reset=datetime.fromtimestamp(reset_at, UTC),
            retry_after=None if allowed else math.ceil(reset_at - now),
        )

    def _purge(self, now: float) -> None:
        expired = [key for key, (_, reset) in self._windows.items() if reset < now]
        for key in expired:
            del self._windows[key]

    @staticmethod
    def headers(result: RateLimitResult) -> dict[str, str]:
        """Rate-limit response headers for a check result."""
        headers = {
            "X-RateLimit-Limit": str(result.limit),
            "X-RateLimit-Remaining": str(result.remaining),
            "X-RateLimit-Reset": result.reset.isoformat().replace("+00:00", "Z"),
        }
        if result.retry_after:
            headers["Retry-After"] = str(result.retry_after)
        return headers


@dataclass
class UsageCheck:
    allowed: bool
    daily_usage: int
    monthly_usage: int


def _within(used: int, limit: int) -> bool:
    return limit == UNLIMITED or used < limit


class UsageTracker:
    """Daily and monthly request quotas backed by the ``usage`` table."""

    def __init__(self, store: AsyncStore):
        self.store = store

    async def check(self, user_id: str, key_id: str, daily_limit: int, monthly_limit: int) -> UsageCheck:
        """Check a key's usage against its quotas.

        A limit of -1 means unlimited. If the database cannot be read the
        request is allowed.
        """
        today = datetime.now(UTC).date()
        try:
            daily = await self.store.sum_requests(user_id, today, api_key_id=key_id)
            monthly = await self.store.sum_requests(user_id, today.replace(day=1), api_key_id=key_id)
        except Exception as e:
            logger.error("usage_check_failed", user_id=user_id, key_id=key_id, error=str(e))
            return UsageCheck(allowed=True, daily_usage=0, monthly_usage=0)

        return UsageCheck(
            allowed=_within(daily, daily_limit) and _within(monthly, monthly_limit),
            daily_usage=daily,
            monthly_usage=monthly,
        )

    async def record(
        self,
        user_id: str,
        key_id: str | None,
        method: str,
        success: bool,
        latency_ms: int,
        bytes_in: int = 0,
        bytes_out: int = 0,
        endpoint: str | None = None,
    ) -> None:
        """Record one request. Failures are logged and never raised."""
        try:
            await self.store.record_usage(
                user_id=user_id,
                api_key_id=key_id,
                method=method,
                success=success,
                latency_ms=latency_ms,
                bytes_in=bytes_in,
                bytes_out=bytes_out,
                endpoint=endpoint,
            )
        except Exception as e:
            logger.error("usage_record_failed", user_id=user_id, key_id=key_id, error=str(e))

"""Retry policy for calls to the Multi-RPC backend admin API.

Dashboard requests wait on these calls, so the policy is short: one retry on
transport errors, 5xx and 429. A ``Retry-After`` from the backend is honoured
up to ``MAX_WAIT_SECONDS``.
"""

from __future__ import annotations

from datetime import UTC, datetime
from email.utils import parsedate_to_datetime

import httpx
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from .logging_config import get_logger

logger = get_logger(__name__)

MAX_ATTEMPTS = 2
MAX_WAIT_SECONDS = 2.0


class TransientHTTPError(Exception):
    """A 5xx or 429 answer from the backend that is worth one more try."""

    def __init__(self, message: str, status_code: int, retry_after: float | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


class RateLimitError(TransientHTTPError):
    """The backend answered 429."""


def parse_retry_after(response: httpx.Response) -> float | None:
    """Seconds to wait from a ``Retry-After`` header (delta or HTTP-date)."""
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (ValueError, TypeError):
        return None
    return max(0.0, (when - datetime.now(UTC)).total_seconds())


_backoff = wait_exponential(multiplier=0.2, max=MAX_WAIT_SECONDS) + wait_random(0, 0.2)


def wait_for_backend(retry_state: RetryCallState) -> float:
    """Use the backend's Retry-After when it sent one, else jittered backoff."""
    exception = retry_state.outcome.exception() if retry_state.outcome else None
    if isinstance(exception, TransientHTTPError) and exception.retry_after is not None:
        return min(exception.retry_after, MAX_WAIT_SECONDS)
    return _backoff(retry_state)


def log_retry_attempt(retry_state: RetryCallState) -> None:
    exception = retry_state.outcome.exception() if retry_state.outcome else None
    wait_time = retry_state.next_action.sleep if retry_state.next_action else 0

    logger.warning(
        "backend_retry",
        attempt=retry_state.attempt_number,
        wait_seconds=round(wait_time, 2),
        status=getattr(exception, "status_code", None),
        error=type(exception).__name__ if exception else None,
    )


backend_retry = retry(
    reraise=True,
    stop=stop_after_attempt(MAX_ATTEMPTS),
    wait=wait_for_backend,
    retry=retry_if_exception_type((httpx.TransportError, TransientHTTPError)),
    before_sleep=log_retry_attempt,
)


def check_response_for_retry(response: httpx.Response) -> None:
    """Raise for a backend answer that is not a success.

    Raises:
        RateLimitError: For 429 responses
        TransientHTTPError: For 5xx responses
        httpx.HTTPStatusError: For other 4xx errors (not retried)
    """
    if response.status_code == 429:
        raise RateLimitError("Backend rate limited (429)", 429, parse_retry_after(response))
    if response.status_code >= 500:
        raise TransientHTTPError(f"Backend error ({response.status_code})", response.status_code)
    response.raise_for_status()

"""
Retry for records API requests.

A request is sent again when httpx could not complete it (connect, read or
write failure, pool timeout) or when the API answered 429 or a transient
5xx. Every other status is final on the first answer. A 429 carrying a
Retry-After header in seconds waits that long (capped) instead of following
the backoff curve.

Page-agent polling has its own deadline-bound primitive in
tabharvest/utils/polling.py.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import httpx

from tabharvest.utils.backoff import BackoffConfig, calculate_backoff
from tabharvest.utils.logging import get_logger

logger = get_logger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class RetriesExhausted(Exception):
    """Every attempt of a request failed with a retryable error."""

    def __init__(self, operation: str, attempts: int, last_error: httpx.HTTPError):
        super().__init__(f"{operation} failed after {attempts} attempts: {_describe(last_error)}")
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error

    @property
    def status(self) -> int | None:
        """Status of the last answer, None when the last attempt got no answer."""
        if isinstance(self.last_error, httpx.HTTPStatusError):
            return self.last_error.response.status_code
        return None


@dataclass
class RequestRetryPolicy:
    max_retries: int = 3
    backoff: BackoffConfig = field(
        default_factory=lambda: BackoffConfig(base_delay=1.0, max_delay=30.0)
    )
    retryable_status_codes: frozenset[int] = RETRYABLE_STATUS_CODES
    max_retry_after: float = 60.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be non-negative")

    def is_retryable(self, error: httpx.HTTPError) -> bool:
        if isinstance(error, httpx.HTTPStatusError):
            return error.response.status_code in self.retryable_status_codes
        return isinstance(error, httpx.TransportError)

    def delay_for(self, attempt: int, error: httpx.HTTPError) -> float:
        """Wait before the retry following attempt (0-based)."""
        if isinstance(error, httpx.HTTPStatusError):
            retry_after = retry_after_seconds(error.response)
            if retry_after is not None:
                return min(retry_after, self.max_retry_after)
        return calculate_backoff(attempt, self.backoff)


def retry_after_seconds(response: httpx.Response) -> float | None:
    """Retry-After in seconds; None when absent or given as an HTTP date."""
    value = response.headers.get("retry-after", "").strip()
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def _describe(error: httpx.HTTPError) -> str:
    if isinstance(error, httpx.HTTPStatusError):
        response = error.response
        return f"{response.status_code} {response.reason_phrase}".strip()
    return str(error) or type(error).__name__


async def send_with_retry(
    send: Callable[[], Awaitable[httpx.Response]],
    *,
    policy: RequestRetryPolicy | None = None,
    operation: str = "request",
) -> httpx.Response:
    """Send a request until it succeeds, fails for good, or retries run out.

    Args:
        send: Issues the request once and returns the raw response.
        policy: Retry policy (default: RequestRetryPolicy()).
        operation: Label for logs and errors ("GET /buildings").

    Returns:
        The first 2xx response.

    Raises:
        httpx.HTTPStatusError: The API answered with a non-retryable status.
        RetriesExhausted: Every attempt failed with a retryable error.
    """
    if policy is None:
        policy = RequestRetryPolicy()

    attempts = policy.max_retries + 1
    for attempt in range(attempts):
        try:
            response = await send()
            response.raise_for_status()
            return response
        except httpx.HTTPError as e:
            if not policy.is_retryable(e):
                logger.warning("Request failed", operation=operation, error=_describe(e))
                raise
            last_error = e

        if attempt + 1 == attempts:
            break
        delay = policy.delay_for(attempt, last_error)
        logger.info(
            "Retrying request",
            operation=operation,
            error=_describe(last_error),
            attempt=attempt + 1,
            max_retries=policy.max_retries,
            delay_seconds=round(delay, 2),
        )
        await asyncio.sleep(delay)

    logger.warning("Request retries exhausted", operation=operation, attempts=attempts)
    raise RetriesExhausted(operation, attempts, last_error)

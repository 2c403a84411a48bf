"""
Deadline-bound polling.

One primitive asks a question repeatedly until an acceptable answer arrives
or the time budget runs out. Two policies instantiate it:

- PollPolicy.agent(): cross-tab questions to a page agent, exponential
  backoff (100ms, 200ms, 400ms, capped) inside a 5-8s budget.
- PollPolicy.render(): same-page "has the SPA rendered X yet" checks at a
  fixed 100ms interval.

The wall-clock budget (max_wait) is the binding limit. max_attempts is a
secondary bound that may end polling earlier, never later.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

from tabharvest.utils.backoff import BackoffConfig, calculate_backoff, calculate_total_delay
from tabharvest.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class PollStatus(str, Enum):
    """How a poll ended."""

    ANSWERED = "answered"
    TIMED_OUT = "timed_out"  # max_wait elapsed
    EXHAUSTED = "exhausted"  # max_attempts reached first


@dataclass(frozen=True)
class PollPolicy:
    """Timing parameters for poll().

    Attributes:
        max_wait: Wall-clock budget in seconds.
        max_attempts: Secondary attempt bound (None = budget only).
        backoff: Exponential schedule; None selects the fixed interval.
        interval: Fixed delay between attempts when backoff is None.
        fatal_exceptions: Exceptions re-raised instead of counted as a failed attempt.
    """

    max_wait: float
    max_attempts: int | None = None
    backoff: BackoffConfig | None = None
    interval: float = 0.1
    fatal_exceptions: tuple[type[BaseException], ...] = field(default=())

    def __post_init__(self) -> None:
        if self.max_wait <= 0:
            raise ValueError("max_wait must be positive")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.interval <= 0:
            raise ValueError("interval must be positive")

    @classmethod
    def agent(
        cls,
        *,
        max_attempts: int = 10,
        max_wait: float = 8.0,
        base_delay: float = 0.1,
        max_delay: float = 0.5,
        fatal_exceptions: tuple[type[BaseException], ...] = (),
    ) -> PollPolicy:
        """Exponential policy for cross-tab page agent queries."""
        return cls(
            max_wait=max_wait,
            max_attempts=max_attempts,
            backoff=BackoffConfig(base_delay=base_delay, max_delay=max_delay),
            fatal_exceptions=fatal_exceptions,
        )

    @classmethod
    def render(cls, *, timeout: float = 5.0, interval: float = 0.1) -> PollPolicy:
        """Fixed-interval policy for same-page render waits."""
        return cls(max_wait=timeout, interval=interval)

    def delay_for(self, attempt: int) -> float:
        """Delay after the given 0-indexed failed attempt."""
        if self.backoff is None:
            return self.interval
        return calculate_backoff(attempt, self.backoff)


@dataclass
class PollOutcome(Generic[T]):
    """Result of poll().

    response is the accepted answer when status is ANSWERED; last_response
    keeps the most recent rejected answer for diagnostics.
    """

    status: PollStatus
    response: T | None = None
    last_response: T | None = None
    last_error: str | None = None
    attempts: int = 0
    elapsed: float = 0.0

    @property
    def answered(self) -> bool:
        return self.status == PollStatus.ANSWERED

    @property
    def timed_out(self) -> bool:
        return not self.answered


async def poll(
    send: Callable[[], Awaitable[T]],
    *,
    accept: Callable[[T], Any],
    policy: PollPolicy,
    operation: str = "poll",
) -> PollOutcome[T]:
    """Ask until accept(response) is truthy or the budget is spent.

    Transport errors (a tab whose agent is not injected yet, a page that is
    mid-navigation) count as failed attempts. Exceptions in
    policy.fatal_exceptions propagate.

    Each attempt is itself bounded so a hung send() cannot hold the poll past
    the budget by more than one backoff step.

    Args:
        send: Coroutine factory performing one attempt.
        accept: Success predicate on the response.
        policy: Timing parameters.
        operation: Name for logging.

    Returns:
        PollOutcome; never raises for "not ready yet".
    """
    start = time.monotonic()
    attempt = 0
    last_response: T | None = None
    last_error: str | None = None

    if policy.backoff is not None and policy.max_attempts is not None:
        logger.debug(
            "Polling started",
            operation=operation,
            max_wait=policy.max_wait,
            max_attempts=policy.max_attempts,
            worst_case_sleep=round(
                calculate_total_delay(policy.max_attempts - 1, policy.backoff), 3
            ),
        )

    while True:
        elapsed = time.monotonic() - start
        attempt_budget = max(policy.max_wait - elapsed, policy.delay_for(attempt))
        attempt += 1

        try:
            response = await asyncio.wait_for(send(), timeout=attempt_budget)
        except policy.fatal_exceptions:
            raise
        except Exception as e:
            last_error = f"{type(e).__name__}: {e}" if str(e) else type(e).__name__
            logger.debug(
                "Poll attempt failed",
                operation=operation,
                attempt=attempt,
                error=last_error,
            )
        else:
            if accept(response):
                return PollOutcome(
                    status=PollStatus.ANSWERED,
                    response=response,
                    attempts=attempt,
                    elapsed=time.monotonic() - start,
                )
            last_response = response

        elapsed = time.monotonic() - start
        if elapsed >= policy.max_wait:
            status = PollStatus.TIMED_OUT
            break
        if policy.max_attempts is not None and attempt >= policy.max_attempts:
            status = PollStatus.EXHAUSTED
            break

        delay = min(policy.delay_for(attempt - 1), policy.max_wait - elapsed)
        await asyncio.sleep(delay)

    logger.debug(
        "Polling gave up",
        operation=operation,
        status=status.value,
        attempts=attempt,
        elapsed=round(elapsed, 3),
        last_error=last_error,
    )
    return PollOutcome(
        status=status,
        last_response=last_response,
        last_error=last_error,
        attempts=attempt,
        elapsed=elapsed,
    )

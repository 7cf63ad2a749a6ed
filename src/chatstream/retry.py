"""Retry with backoff, shared by the line reconciler and the persistence gateway.

A RetryPolicy bounds the loop by attempt count, elapsed time, or both, and
supplies the delay before each retry:

    RetryPolicy.exponential(max_attempts=5, base=0.1, cap=1.0)   # 0.1, 0.2, 0.4, 0.8
    RetryPolicy.polling(interval=0.05, max_elapsed=0.15)         # every 50ms for 150ms
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger("chatstream.retry")

T = TypeVar("T")


class RetryExhausted(Exception):
    """Raised when a retry policy runs out of attempts or time."""

    def __init__(self, attempts: int, elapsed: float, last_error: BaseException | None = None) -> None:
        self.attempts = attempts
        self.elapsed = elapsed
        self.last_error = last_error
        reason = f": {last_error}" if last_error is not None else ""
        super().__init__(f"gave up after {attempts} attempts in {elapsed * 1000:.0f}ms{reason}")


@dataclass(frozen=True)
class RetryPolicy:
    """When to stop retrying and how long to wait between attempts.

    delay(n) is the wait before retry n (1-based). At least one of
    max_attempts / max_elapsed must be set.
    """

    delay: Callable[[int], float]
    max_attempts: int | None = None
    max_elapsed: float | None = None

    def __post_init__(self) -> None:
        if self.max_attempts is None and self.max_elapsed is None:
            raise ValueError("RetryPolicy needs max_attempts or max_elapsed")

    @classmethod
    def exponential(cls, max_attempts: int, base: float, cap: float) -> RetryPolicy:
        """Doubling delay starting at base, never above cap."""
        return cls(delay=lambda n: min(base * 2 ** (n - 1), cap), max_attempts=max_attempts)

    @classmethod
    def polling(cls, interval: float, max_elapsed: float) -> RetryPolicy:
        """Constant delay until max_elapsed seconds have passed.

        The attempt count is capped too (one initial try plus one per interval),
        so the loop stays bounded when the clock barely moves.
        """
        polls = math.ceil(round(max_elapsed / interval, 6)) if interval > 0 else 0
        return cls(delay=lambda _n: interval, max_attempts=polls + 1, max_elapsed=max_elapsed)

    def allows(self, attempts: int, elapsed: float) -> bool:
        """True if another attempt may follow `attempts` attempts made so far."""
        if self.max_attempts is not None and attempts >= self.max_attempts:
            return False
        return self.max_elapsed is None or elapsed < self.max_elapsed


async def retry_async(
    attempt: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    should_retry: Callable[[BaseException], bool] = lambda _exc: True,
    sleep: Callable[[float], Awaitable[object]] | None = None,
) -> T:
    """Await attempt() until it returns, backing off between failures.

    Exceptions rejected by should_retry propagate unchanged. When the policy
    is exhausted RetryExhausted is raised, chained to the last error.
    """
    sleep = sleep or asyncio.sleep
    started = time.monotonic()
    attempts = 0
    while True:
        attempts += 1
        try:
            return await attempt()
        except Exception as exc:
            if not should_retry(exc):
                raise
            elapsed = time.monotonic() - started
            if not policy.allows(attempts, elapsed):
                raise RetryExhausted(attempts, elapsed, exc) from exc
            wait = policy.delay(attempts)
            logger.debug("attempt %d failed (%s), retrying in %.0fms", attempts, exc, wait * 1000)
            await sleep(wait)

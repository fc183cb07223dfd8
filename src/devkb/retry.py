"""Bounded exponential-backoff retry."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """One initial attempt plus up to ``max_retries`` retries."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float | None = None

    @property
    def max_attempts(self) -> int:
        return max(self.max_retries, 0) + 1

    def delay(self, attempt: int) -> float:
        """Seconds to wait after the failed ``attempt`` (zero-based)."""
        delay = self.base_delay * (2 ** attempt)
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay


def with_retry(
    operation: Callable[[], T],
    policy: RetryPolicy,
    sleep: Callable[[float], None] = time.sleep,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
) -> T:
    """Run ``operation`` until it succeeds or the policy is exhausted.

    The last error is re-raised unchanged once every attempt has failed.
    Errors not listed in ``retry_on`` propagate immediately.
    """
    for attempt in range(policy.max_attempts):
        try:
            return operation()
        except retry_on as exc:
            if attempt >= policy.max_attempts - 1:
                raise
            delay = policy.delay(attempt)
            logger.debug(
                "Attempt %d/%d failed (%s), retrying in %.2fs",
                attempt + 1, policy.max_attempts, exc, delay,
            )
            sleep(delay)
    raise AssertionError("unreachable")

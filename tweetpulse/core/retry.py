"""TweetPulse: Bounded Retry Combinator.

One policy object drives both kinds of retry in the pipeline:

* transport retries inside a single call (``retry_async`` sleeps with
  exponential backoff between attempts), and
* cross-invocation retries of the sentiment ledger, where nothing sleeps and
  the policy only decides whether a record has used up its attempts
  (``RetryPolicy.exhausted``).
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from tweetpulse.core.logging import get_logger

logger = get_logger("core.retry")

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Max attempts plus an exponential backoff schedule."""

    max_attempts: int
    base_delay: float = 1.0
    factor: float = 2.0
    max_delay: float = 30.0
    jitter: bool = True

    def delay_for(self, attempt: int) -> float:
        """Delay before the attempt following ``attempt`` (1-based)."""
        delay = min(self.base_delay * (self.factor ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay *= 1 + random.random() * 0.1
        return delay

    def exhausted(self, attempts_made: int) -> bool:
        return attempts_made >= self.max_attempts


def _always(_: BaseException) -> bool:
    return True


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    is_retryable: Callable[[BaseException], bool] = _always,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "operation",
) -> T:
    """Run ``operation`` until it succeeds, raises a non-retryable error,
    or the policy runs out of attempts. The last error is re-raised."""
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as e:
            if not is_retryable(e) or policy.exhausted(attempt):
                raise
            wait = policy.delay_for(attempt)
            logger.warning(
                f"{label} failed ({e}). Retrying in {wait:.2f}s "
                f"(attempt {attempt}/{policy.max_attempts})"
            )
            await sleep(wait)


def transport_policy(retries: int, base_delay: float = 1.0) -> RetryPolicy:
    """Policy for ``retries`` extra attempts after the first call."""
    return RetryPolicy(max_attempts=max(1, retries + 1), base_delay=base_delay)


def ledger_policy(max_retries: int) -> RetryPolicy:
    """Policy for the cross-invocation failure count. Never sleeps."""
    return RetryPolicy(max_attempts=max(1, max_retries), base_delay=0.0, jitter=False)

"""TweetPulse: Rolling-Window Rate Limiter.

Gates calls to the sentiment service under three optional budgets:

1. Requests per minute (rolling 60s window of grant timestamps)
2. Tokens per minute (per-request token estimate summed over the window)
3. A fixed minimum interval between consecutive grants

Waiters queue on a single lock, so permits are granted in arrival order.
"""

import asyncio
import time
from collections import deque
from typing import Awaitable, Callable, Deque, Optional, Tuple

from tweetpulse.core.logging import get_logger

logger = get_logger("core.rate_limiter")

WINDOW_SECONDS = 60.0
MIN_WAIT_SECONDS = 0.05


class WindowRateLimiter:
    """Shared permit source for concurrent sentiment workers."""

    def __init__(
        self,
        rpm_cap: Optional[int] = None,
        tpm_cap: Optional[int] = None,
        tokens_per_request: int = 600,
        min_interval: float = 0.0,
        window: float = WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.rpm_cap = rpm_cap if rpm_cap and rpm_cap > 0 else None
        self.tpm_cap = tpm_cap if tpm_cap and tpm_cap > 0 else None
        self.tokens_per_request = max(1, tokens_per_request)
        self.min_interval = max(0.0, min_interval)
        self.window = window
        self._clock = clock
        self._sleep = sleep
        self._grants: Deque[Tuple[float, int]] = deque()
        self._last_grant: Optional[float] = None
        self._lock = asyncio.Lock()

    @property
    def tokens_in_window(self) -> int:
        return sum(tokens for _, tokens in self._grants)

    def _prune(self, now: float) -> None:
        while self._grants and now - self._grants[0][0] >= self.window:
            self._grants.popleft()

    def _wait_time(self, now: float, tokens: int) -> float:
        waits = [0.0]

        if self._last_grant is not None and self.min_interval:
            waits.append(self.min_interval - (now - self._last_grant))

        if self.rpm_cap and len(self._grants) >= self.rpm_cap:
            waits.append(self._grants[0][0] + self.window - now)

        if self.tpm_cap and self._grants:
            if self.tokens_in_window + tokens > self.tpm_cap:
                # Wait until enough of the oldest grants fall out of the window
                freed = 0
                needed = self.tokens_in_window + tokens - self.tpm_cap
                for granted_at, granted_tokens in self._grants:
                    freed += granted_tokens
                    if freed >= needed:
                        waits.append(granted_at + self.window - now)
                        break

        return max(waits)

    async def acquire(self, tokens: Optional[int] = None) -> float:
        """Block until a permit is available. Returns seconds spent waiting."""
        tokens = tokens or self.tokens_per_request
        waited = 0.0
        async with self._lock:
            while True:
                now = self._clock()
                self._prune(now)
                wait = self._wait_time(now, tokens)
                if wait <= 0:
                    self._grants.append((now, tokens))
                    self._last_grant = now
                    return waited
                wait = max(wait, MIN_WAIT_SECONDS)
                logger.debug(f"Rate limit reached, waiting {wait:.2f}s")
                waited += wait
                await self._sleep(wait)

"""Per-endpoint request pacing.

A RateLimiter admits at most ``concurrency`` calls in flight and at most
``rate`` call starts within any rolling ``interval``. Admission waits as
long as it takes; callers get backpressure, never a timeout.
"""

from __future__ import annotations

import asyncio
import collections
import contextlib
import logging
import time
from typing import TYPE_CHECKING, Any, TypeVar

from speech_services.monitoring.metrics import rate_limit_wait_seconds

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RateLimiter:
    """Sliding-window limiter with a concurrency bound (defaults to ``rate``)."""

    def __init__(
        self,
        rate: int,
        interval: float = 1.0,
        concurrency: int | None = None,
        *,
        name: str = "",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if rate <= 0:
            raise ValueError(f"rate must be positive, got {rate}")
        self.rate = rate
        self.interval = interval
        self.concurrency = concurrency or rate
        self.name = name
        self._clock = clock
        self._sleep = sleep
        self._slots = asyncio.Semaphore(self.concurrency)
        self._window_lock = asyncio.Lock()
        self._starts: collections.deque[float] = collections.deque()
        self.in_flight = 0

    async def acquire(self) -> None:
        """Wait for a free slot and a free place in the current window."""
        requested = self._clock()
        await self._slots.acquire()
        try:
            async with self._window_lock:
                while True:
                    now = self._clock()
                    while self._starts and now - self._starts[0] >= self.interval:
                        self._starts.popleft()
                    if len(self._starts) < self.rate:
                        self._starts.append(now)
                        break
                    await self._sleep(self._starts[0] + self.interval - now)
        except BaseException:
            self._slots.release()
            raise

        self.in_flight += 1
        waited = self._clock() - requested
        rate_limit_wait_seconds.labels(endpoint=self.name or "default").observe(waited)
        if waited > self.interval:
            logger.debug("Rate limiter %s held a call for %.2fs", self.name, waited)

    def release(self) -> None:
        self.in_flight -= 1
        self._slots.release()

    @contextlib.asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        await self.acquire()
        try:
            yield
        finally:
            self.release()

    async def run(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run ``fn`` once admitted."""
        async with self.slot():
            return await fn(*args, **kwargs)


# One limiter per endpoint for the life of the process
_limiters: dict[str, RateLimiter] = {}


def get_rate_limiter(name: str, rate: int) -> RateLimiter:
    """Return the shared limiter for ``name``, creating it on first use."""
    limiter = _limiters.get(name)
    if limiter is None:
        limiter = _limiters[name] = RateLimiter(rate, name=name)
        logger.debug("Rate limiter %s created (%d/s)", name, rate)
    elif limiter.rate != rate:
        logger.warning(
            "Rate limiter %s already exists at %d/s, ignoring %d/s", name, limiter.rate, rate
        )
    return limiter


def reset_rate_limiters() -> None:
    """Forget every shared limiter (for tests)."""
    _limiters.clear()

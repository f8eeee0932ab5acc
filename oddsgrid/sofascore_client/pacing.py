"""Request pacing: reservoir + concurrency + spacing gate, and delay formulas."""

from __future__ import annotations

import asyncio
import random
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional

from ..logging_utils import _dbg, _env_int
from .base import ErrorKind


@dataclass(frozen=True)
class PacingPolicy:
    reservoir: int = 100
    refill_amount: int = 50
    refill_interval_s: float = 60.0
    max_concurrent: int = 2
    min_spacing_s: float = 2.0
    rotate_every: int = 10
    max_retries: int = 2
    max_forbidden: int = 3

    @classmethod
    def from_env(cls) -> "PacingPolicy":
        return cls(
            reservoir=max(1, _env_int("ODDSGRID_RESERVOIR", 100)),
            refill_amount=max(1, _env_int("ODDSGRID_RESERVOIR_REFILL", 50)),
            max_concurrent=max(1, _env_int("ODDSGRID_MAX_CONCURRENT", 2)),
            min_spacing_s=max(0, _env_int("ODDSGRID_MIN_SPACING_MS", 2000)) / 1000.0,
            rotate_every=max(1, _env_int("ODDSGRID_ROTATE_EVERY", 10)),
        )


class RateGate:
    """
    Admission gate shared by all calls of one client session.

    A call holds a concurrency slot for its whole duration, consumes one
    reservoir token and starts no sooner than `min_spacing_s` after the
    previous start.
    """

    def __init__(
        self,
        policy: Optional[PacingPolicy] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.policy = policy or PacingPolicy()
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(self.policy.reservoir)
        self._last_refill: Optional[float] = None
        self._last_start: Optional[float] = None
        self._slots = asyncio.Semaphore(self.policy.max_concurrent)
        self._lock = asyncio.Lock()

    @property
    def tokens(self) -> int:
        return int(self._tokens)

    def _refill(self, now: float) -> None:
        if self._last_refill is None:
            self._last_refill = now
            return
        interval = self.policy.refill_interval_s
        periods = int((now - self._last_refill) // interval)
        if periods <= 0:
            return
        self._tokens = min(float(self.policy.reservoir), self._tokens + periods * self.policy.refill_amount)
        self._last_refill += periods * interval

    def _wait_needed(self, now: float) -> float:
        wait = 0.0
        if self._tokens < 1 and self._last_refill is not None:
            wait = self._last_refill + self.policy.refill_interval_s - now
        if self._last_start is not None:
            wait = max(wait, self._last_start + self.policy.min_spacing_s - now)
        return wait

    async def acquire(self) -> None:
        await self._slots.acquire()
        try:
            async with self._lock:
                while True:
                    now = self._clock()
                    self._refill(now)
                    wait = self._wait_needed(now)
                    if wait <= 0:
                        break
                    _dbg(f"rate gate: waiting {wait:.2f}s (tokens={self.tokens})")
                    await self._sleep(wait)
                self._tokens -= 1
                self._last_start = self._clock()
        except BaseException:
            self._slots.release()
            raise

    def release(self) -> None:
        self._slots.release()

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        await self.acquire()
        try:
            yield
        finally:
            self.release()


def compute_delay_ms(request_count: int, retry: int, since_last_ms: float, rng: Optional[random.Random] = None) -> int:
    """Adaptive pre-request delay; the result is floored at 1000 ms."""
    r = rng or random
    base = r.randint(2000, 5000)
    progressive = min(int(request_count) * 150, 8000)
    exponential = (2 ** int(retry)) * 5000 if retry > 0 else 0
    return int(max(base + progressive + exponential - since_last_ms, 1000))


def backoff_ms(kind: ErrorKind, retry: int) -> int:
    """Wait before the next attempt after a retryable failure of `kind`."""
    if kind == ErrorKind.FORBIDDEN:
        return min(15000 + retry * 10000, 60000)
    if kind == ErrorKind.RATE_LIMITED:
        return (2 ** (retry + 3)) * 5000
    if kind == ErrorKind.SERVER_ERROR:
        return (retry + 1) * 8000
    if kind == ErrorKind.TIMEOUT:
        return (retry + 1) * 10000
    return (retry + 1) * 5000

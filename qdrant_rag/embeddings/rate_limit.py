"""
Throttling and retry discipline for remote calls.

RateLimiter enforces a requests-per-window ceiling over a sliding window
with FIFO admission. RateLimitedCaller wraps an idempotent coroutine with
the limiter plus an explicit RetryPolicy. Each provider owns its own
instances; nothing here is module-global.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import httpx

from qdrant_rag.errors import ProviderUnavailableError, RetrievalError

LOG = logging.getLogger("embeddings.rate_limit")

T = TypeVar("T")

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry schedule for transient failures.

    ``retries`` is the number of retries after the first attempt; the delay
    before retry ``n`` (0-based) is ``min(base_delay * 2**n, max_delay)``.
    """

    retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0

    def delay_for(self, attempt: int) -> float:
        return min(self.base_delay * (2**attempt), self.max_delay)


class RateLimiter:
    """
    Sliding-window limiter: at most ``max_requests`` admissions in any
    ``period`` seconds. Waiters are admitted in submission order.
    """

    def __init__(
        self,
        max_requests: int,
        period: float = 60.0,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if max_requests < 1:
            raise ValueError(f"max_requests must be >= 1, got {max_requests}")
        self._max = max_requests
        self._period = period
        self._clock = clock
        self._sleep = sleep
        self._stamps: deque[float] = deque()
        self._lock = asyncio.Lock()

    @property
    def max_requests(self) -> int:
        return self._max

    async def acquire(self) -> None:
        # asyncio.Lock wakes waiters in FIFO order, so holding it while we
        # sleep keeps later callers queued behind earlier ones.
        async with self._lock:
            while True:
                now = self._clock()
                while self._stamps and now - self._stamps[0] >= self._period:
                    self._stamps.popleft()
                if len(self._stamps) < self._max:
                    self._stamps.append(now)
                    return
                wait = self._period - (now - self._stamps[0])
                LOG.debug("Rate limit reached (%d/%.0fs), waiting %.2fs", self._max, self._period, wait)
                await self._sleep(wait)


def is_transient_http(exc: BaseException) -> bool:
    """Timeouts, transport failures, 429 and 5xx are worth retrying."""
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        return code == 429 or code >= 500
    return isinstance(exc, httpx.TransportError)


def retry_after_seconds(exc: BaseException) -> float | None:
    """Parse a numeric Retry-After header from a 429 response, if any."""
    if not isinstance(exc, httpx.HTTPStatusError) or exc.response.status_code != 429:
        return None
    raw = exc.response.headers.get("retry-after")
    if raw is None:
        return None
    try:
        return max(0.0, float(raw))
    except ValueError:
        return None


class RateLimitedCaller:
    """
    Runs an idempotent remote operation under a limiter and retry policy.

    Every attempt, retries included, is admitted through the limiter.
    Non-transient errors propagate unchanged on the first failure; transient
    ones are retried and, once the policy is exhausted, surfaced as
    ``exhausted_error``.
    """

    def __init__(
        self,
        name: str,
        limiter: RateLimiter | None,
        policy: RetryPolicy,
        *,
        is_transient: Callable[[BaseException], bool] = is_transient_http,
        exhausted_error: type[RetrievalError] = ProviderUnavailableError,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._name = name
        self._limiter = limiter
        self._policy = policy
        self._is_transient = is_transient
        self._exhausted_error = exhausted_error
        self._sleep = sleep

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    @property
    def limiter(self) -> RateLimiter | None:
        return self._limiter

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        attempt = 0
        while True:
            if self._limiter is not None:
                await self._limiter.acquire()
            try:
                return await operation()
            except Exception as exc:
                if not self._is_transient(exc):
                    raise
                if attempt >= self._policy.retries:
                    raise self._exhausted_error(
                        f"{self._name}: giving up after {attempt + 1} attempts: {exc}"
                    ) from exc
                wait = self._policy.delay_for(attempt)
                hinted = retry_after_seconds(exc)
                if hinted is not None:
                    wait = min(max(wait, hinted), self._policy.max_delay)
                LOG.warning(
                    "%s call failed (attempt %d/%d): %s. Retrying in %.2fs.",
                    self._name,
                    attempt + 1,
                    self._policy.retries + 1,
                    exc,
                    wait,
                )
                await self._sleep(wait)
                attempt += 1

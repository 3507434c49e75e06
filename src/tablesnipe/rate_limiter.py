"""Per-platform token bucket rate limiting for outbound platform calls.

Refill is lazy: every access computes how many whole refill intervals have
elapsed since the last refill, so no background task is needed and the
bucket stays correct across long idle stretches (a sniper is silent until
seconds before release).
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from tablesnipe.models import (
    DEFAULT_RATE_LIMITS,
    FALLBACK_RATE_LIMIT,
    BucketStatus,
    RateLimit,
)

logger = logging.getLogger(__name__)

DEFAULT_ACQUIRE_TIMEOUT = 30.0

# Timer callbacks can run up to one clock resolution early
_WAKE_SLACK = 0.001


@dataclass
class TokenBucket:
    tokens: int
    last_refill: float
    max_tokens: int
    refill_rate: int
    refill_interval: float


@dataclass
class _Waiter:
    future: asyncio.Future
    handle: asyncio.TimerHandle | None = field(default=None)


class RateLimiter:
    """
    Token buckets keyed by platform name.

    Shared by every snipe executor hitting the same platform, so buckets are
    per platform rather than per snipe. Refill + consume happens under a lock,
    keeping token accounting atomic for concurrent acquirers.
    """

    def __init__(
        self,
        limits: Mapping[str, RateLimit] | None = None,
        default_limit: RateLimit = FALLBACK_RATE_LIMIT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._limits = dict(DEFAULT_RATE_LIMITS if limits is None else limits)
        self._default_limit = default_limit
        self._clock = clock
        self._buckets: dict[str, TokenBucket] = {}
        self._waiters: dict[str, list[_Waiter]] = {}
        self._lock = threading.Lock()

    def _get_bucket(self, platform: str) -> TokenBucket:
        bucket = self._buckets.get(platform)
        if bucket is None:
            limit = self._limits.get(platform, self._default_limit)
            bucket = TokenBucket(
                tokens=limit.max_tokens,
                last_refill=self._clock(),
                max_tokens=limit.max_tokens,
                refill_rate=limit.refill_rate,
                refill_interval=limit.refill_interval_seconds,
            )
            self._buckets[platform] = bucket
        return bucket

    def _refill(self, bucket: TokenBucket) -> None:
        now = self._clock()
        intervals = int((now - bucket.last_refill) // bucket.refill_interval)
        if intervals > 0:
            bucket.tokens = min(
                bucket.max_tokens, bucket.tokens + intervals * bucket.refill_rate
            )
            bucket.last_refill = now

    def try_acquire(self, platform: str) -> bool:
        """Take a token if one is available. Never waits."""
        with self._lock:
            bucket = self._get_bucket(platform)
            self._refill(bucket)
            if bucket.tokens > 0:
                bucket.tokens -= 1
                return True
            return False

    def _time_to_refill(self, platform: str) -> float:
        with self._lock:
            bucket = self._get_bucket(platform)
            return bucket.refill_interval - (self._clock() - bucket.last_refill)

    async def acquire(self, platform: str, timeout: float = DEFAULT_ACQUIRE_TIMEOUT) -> bool:
        """Take a token, waiting for the next refill if it comes within timeout.

        Retries exactly once after the wait. Returns False without waiting
        when the next refill is further away than timeout.
        """
        if self.try_acquire(platform):
            return True

        wait = self._time_to_refill(platform)
        if wait > timeout:
            logger.debug(
                "%s rate limited: next refill in %.1fs exceeds timeout %.1fs",
                platform, wait, timeout,
            )
            return False

        loop = asyncio.get_running_loop()
        waiter = _Waiter(future=loop.create_future())

        def _wake() -> None:
            if not waiter.future.done():
                waiter.future.set_result(self.try_acquire(platform))

        waiter.handle = loop.call_later(max(0.0, min(wait, timeout)) + _WAKE_SLACK, _wake)
        self._waiters.setdefault(platform, []).append(waiter)
        try:
            return await waiter.future
        finally:
            waiter.handle.cancel()
            queue = self._waiters.get(platform)
            if queue and waiter in queue:
                queue.remove(waiter)

    def get_status(self, platform: str) -> BucketStatus:
        with self._lock:
            bucket = self._get_bucket(platform)
            self._refill(bucket)
            next_refill = bucket.refill_interval - (self._clock() - bucket.last_refill)
            return BucketStatus(
                platform=platform,
                available=bucket.tokens,
                max=bucket.max_tokens,
                next_refill=max(0.0, next_refill),
                is_limited=bucket.tokens <= 0,
            )

    def get_all_status(self) -> list[BucketStatus]:
        platforms = list(self._limits) + [p for p in self._buckets if p not in self._limits]
        return [self.get_status(p) for p in platforms]

    def reset(self, platform: str) -> None:
        """Drop the bucket and fail any coroutine waiting on it."""
        with self._lock:
            self._buckets.pop(platform, None)
        for waiter in self._waiters.pop(platform, []):
            if waiter.handle:
                waiter.handle.cancel()
            if not waiter.future.done():
                waiter.future.set_result(False)

    def reset_all(self) -> None:
        for platform in set(self._buckets) | set(self._waiters):
            self.reset(platform)

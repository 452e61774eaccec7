"""
Sliding-window rate limiting for upstream providers.

Each provider owns a pyrate-limiter ``InMemoryBucket`` holding one
``Rate(capacity, window)``. ``admit()`` blocks the caller until the bucket
accepts a new item. The put-or-measure step runs under an ``asyncio.Lock`` so
two concurrent callers can never both claim the last slot.

NOTE: Waiting happens outside the lock. A caller that wakes up re-checks the
bucket because other callers may have refilled it in the meantime.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from pyrate_limiter import Duration, Rate, RateItem
from pyrate_limiter.buckets import InMemoryBucket

logger = logging.getLogger(__name__)

ClockFunc = Callable[[], float]
SleepFunc = Callable[[float], Awaitable[Any]]

# Buckets count whole milliseconds; never sleep for less than one tick
MIN_WAIT_MS = 1


class Provider(str, Enum):
    """Upstream data sources, used as the rate limiter partition key."""

    NPM_REGISTRY = "npm_registry"
    NPM_DOWNLOADS = "npm_downloads"
    OSV = "osv"
    GITHUB_ADVISORIES = "github_advisories"
    GITHUB_REPO = "github_repo"
    OSS_INDEX = "oss_index"
    NPM_AUDIT = "npm_audit"
    RESEARCH_DATASET = "research_dataset"


@dataclass(frozen=True)
class RateWindowConfig:
    """Capacity of a provider window: ``capacity`` requests per ``window_seconds``."""

    capacity: int
    window_seconds: float

    def __post_init__(self):
        if self.capacity < 1:
            raise ValueError(f"capacity must be positive, got {self.capacity}")
        if self.window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive, got {self.window_seconds}")


class SlidingWindowRateLimiter:
    """
    Sliding-window admission gate for one provider.

    Thread Safety: admission uses an asyncio.Lock, lazily recreated when the
    event loop changes (Lambda may reuse the process with a fresh loop).
    """

    def __init__(
        self,
        name: str,
        config: RateWindowConfig,
        clock: ClockFunc = time.monotonic,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.name = name
        self.config = config
        self._clock = clock
        self._sleep = sleep
        window_ms = max(1, int(int(Duration.SECOND) * config.window_seconds))
        self.rate = Rate(config.capacity, window_ms)
        self.bucket = InMemoryBucket([self.rate])
        self._lock: Optional[asyncio.Lock] = None
        self._lock_loop_id: Optional[int] = None

    def _get_lock(self) -> asyncio.Lock:
        """Get asyncio.Lock, recreating if event loop changed."""
        try:
            current_loop_id = id(asyncio.get_running_loop())
        except RuntimeError:
            current_loop_id = None

        if self._lock is not None and self._lock_loop_id != current_loop_id:
            self._lock = None

        if self._lock is None:
            self._lock = asyncio.Lock()
            self._lock_loop_id = current_loop_id

        return self._lock

    def _now_ms(self) -> int:
        return int(round(self._clock() * 1000))

    def _try_reserve(self) -> Optional[float]:
        """Reserve a slot if one is free.

        Returns None when the slot was reserved, otherwise the number of
        seconds until the bucket expects to accept the item.
        """
        now_ms = self._now_ms()
        self.bucket.leak(now_ms)
        item = RateItem(self.name, now_ms)
        if self.bucket.put(item):
            return None
        wait_ms = max(self.bucket.waiting(item), MIN_WAIT_MS)
        return wait_ms / 1000

    @property
    def in_window(self) -> int:
        """Number of requests currently counted against the window."""
        self.bucket.leak(self._now_ms())
        return self.bucket.count()

    async def admit(self) -> float:
        """
        Block until a slot is available, then reserve it.

        Returns:
            Total seconds spent waiting (0.0 when admitted immediately).
        """
        waited = 0.0
        while True:
            async with self._get_lock():
                wait_time = self._try_reserve()
            if wait_time is None:
                if waited:
                    logger.debug(
                        f"Rate limiter {self.name}: admitted after {waited:.2f}s",
                        extra={"provider": self.name, "waited_seconds": waited},
                    )
                return waited

            logger.debug(
                f"Rate limiter {self.name}: window full, waiting {wait_time:.3f}s",
                extra={"provider": self.name, "wait_seconds": wait_time},
            )
            await self._sleep(wait_time)
            waited += wait_time


class RateLimiterRegistry:
    """
    One sliding-window limiter per provider.

    Build one registry at process start and pass it to the collectors; tests
    create their own instances for isolation.
    """

    def __init__(
        self,
        limiters: Optional[Mapping[Provider, SlidingWindowRateLimiter]] = None,
    ):
        self._limiters: Dict[Provider, SlidingWindowRateLimiter] = dict(limiters or {})

    @classmethod
    def from_config(
        cls,
        config: Mapping[Provider, RateWindowConfig],
        clock: ClockFunc = time.monotonic,
        sleep: SleepFunc = asyncio.sleep,
    ) -> "RateLimiterRegistry":
        return cls(
            {
                provider: SlidingWindowRateLimiter(provider.value, window, clock=clock, sleep=sleep)
                for provider, window in config.items()
            }
        )

    def get(self, provider: Provider) -> Optional[SlidingWindowRateLimiter]:
        return self._limiters.get(provider)

    def __contains__(self, provider: Provider) -> bool:
        return provider in self._limiters

    async def admit(self, provider: Provider) -> float:
        """Admit one request for ``provider``.

        Providers without a configured window are admitted immediately.
        """
        limiter = self._limiters.get(provider)
        if limiter is None:
            logger.debug(f"No rate window configured for {provider}, admitting")
            return 0.0
        return await limiter.admit()

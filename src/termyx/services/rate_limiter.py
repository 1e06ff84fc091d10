"""
Fixed-window rate limiting.

Counters live in a process-local dict: the configured limits hold only when
a single process serves all traffic. With N instances each one counts on
its own, so effective limits grow by a factor of N. A shared store with
atomic increment-with-expiry, keyed the same way, is the replacement for
multi-instance deployments.

Being fixed-window, a burst straddling a window boundary can get up to
twice the limit through.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from ..models.results import RateLimitResult

logger = logging.getLogger(__name__)


@dataclass
class RateLimitRecord:
    count: int
    reset_at: float


@dataclass(frozen=True)
class RateLimitPreset:
    limit: int
    window_seconds: int


RATE_LIMIT_PRESETS: Dict[str, RateLimitPreset] = {
    # Standard API traffic
    "standard": RateLimitPreset(limit=60, window_seconds=60),
    # Sensitive operations
    "strict": RateLimitPreset(limit=10, window_seconds=60),
    # Login / signup attempts
    "auth": RateLimitPreset(limit=5, window_seconds=900),
    "email": RateLimitPreset(limit=10, window_seconds=3600),
    "pdf": RateLimitPreset(limit=20, window_seconds=3600),
    # High-volume payment gateway callbacks
    "webhook": RateLimitPreset(limit=100, window_seconds=60),
}

DEFAULT_PRESET = RATE_LIMIT_PRESETS["standard"]


class RateLimiter:
    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._store: Dict[str, RateLimitRecord] = {}
        self._sweeper: Optional[asyncio.Task[None]] = None

    def __len__(self) -> int:
        return len(self._store)

    def hit(
        self,
        identifier: str,
        limit: int = DEFAULT_PRESET.limit,
        window_seconds: int = DEFAULT_PRESET.window_seconds,
    ) -> RateLimitResult:
        """
        Count one request for `identifier` and report whether it is admitted.
        """
        now = self._clock()
        record = self._store.get(identifier)

        if record is None or record.reset_at < now:
            record = RateLimitRecord(count=1, reset_at=now + window_seconds)
            self._store[identifier] = record
            return RateLimitResult(
                success=True,
                limit=limit,
                remaining=max(0, limit - 1),
                reset=record.reset_at,
            )

        record.count += 1
        return RateLimitResult(
            success=record.count <= limit,
            limit=limit,
            remaining=max(0, limit - record.count),
            reset=record.reset_at,
        )

    def preset(self, name: str, identifier: str) -> RateLimitResult:
        # Each preset counts in its own key space
        preset = RATE_LIMIT_PRESETS[name]
        return self.hit(f"{name}:{identifier}", preset.limit, preset.window_seconds)

    def standard(self, identifier: str) -> RateLimitResult:
        return self.preset("standard", identifier)

    def strict(self, identifier: str) -> RateLimitResult:
        return self.preset("strict", identifier)

    def auth(self, identifier: str) -> RateLimitResult:
        return self.preset("auth", identifier)

    def email(self, identifier: str) -> RateLimitResult:
        return self.preset("email", identifier)

    def pdf(self, identifier: str) -> RateLimitResult:
        return self.preset("pdf", identifier)

    def webhook(self, identifier: str) -> RateLimitResult:
        return self.preset("webhook", identifier)

    def sweep(self) -> int:
        """Drop expired windows. Returns how many were removed."""
        now = self._clock()
        expired = [key for key, record in self._store.items() if record.reset_at < now]
        for key in expired:
            del self._store[key]
        return len(expired)

    def start_sweeper(self, interval_seconds: float = 300) -> asyncio.Task[None]:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_forever(interval_seconds))
        return self._sweeper

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    async def _sweep_forever(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            removed = self.sweep()
            if removed:
                logger.debug("Rate limiter swept %s expired entries", removed)


def rate_limit_headers(result: RateLimitResult) -> Dict[str, str]:
    return {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(int(result.reset)),
    }

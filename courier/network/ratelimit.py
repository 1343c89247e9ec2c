"""Per-recipient fixed-window rate limiter."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict

from courier.config import RateLimitSettings

LOGGER = logging.getLogger(__name__)


@dataclass
class RateWindow:
    key: str
    count: int
    window_ends_at: float


class RateLimiter:
    """Fixed-window counter keyed by recipient.

    ``acquire`` never rejects: once a window is full the caller sleeps until
    it ends and is then admitted into a fresh window. The read-modify-write
    of a key's window runs under that key's lock, so acquisitions for one
    recipient serialize while other recipients proceed independently.
    """

    def __init__(
        self,
        max_requests: int = 30,
        window_ms: int = 1000,
        *,
        idle_eviction_seconds: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_requests < 1 or window_ms < 1:
            raise ValueError("max_requests and window_ms must be positive")
        self.max_requests = int(max_requests)
        self.window = window_ms / 1000.0
        self._idle_eviction = float(idle_eviction_seconds)
        self._clock = clock
        self._sleep = sleep
        self._windows: Dict[str, RateWindow] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._last_prune = clock()

    @classmethod
    def from_settings(cls, settings: RateLimitSettings) -> "RateLimiter":
        return cls(
            settings.max_requests,
            settings.window_ms,
            idle_eviction_seconds=settings.idle_eviction_seconds,
        )

    async def acquire(self, key: str) -> float:
        """Admit one request for ``key``; returns the seconds spent waiting."""

        lock = self._locks.setdefault(key, asyncio.Lock())
        waited = 0.0
        async with lock:
            now = self._clock()
            window = self._windows.get(key)
            if window is None or now >= window.window_ends_at:
                self._windows[key] = RateWindow(key, 1, now + self.window)
            elif window.count < self.max_requests:
                window.count += 1
            else:
                waited = window.window_ends_at - now
                LOGGER.debug("Rate limit reached for %s; waiting %.3fs", key, waited)
                await self._sleep(waited)
                self._windows[key] = RateWindow(key, 1, self._clock() + self.window)
        self._maybe_prune()
        return waited

    def window_for(self, key: str) -> RateWindow | None:
        return self._windows.get(key)

    def __len__(self) -> int:
        return len(self._windows)

    def prune(self, now: float | None = None) -> int:
        """Forget keys whose window ended more than the idle period ago."""

        if now is None:
            now = self._clock()
        stale = [
            key
            for key, window in self._windows.items()
            if now >= window.window_ends_at + self._idle_eviction
            and not (key in self._locks and self._locks[key].locked())
        ]
        for key in stale:
            self._windows.pop(key, None)
            self._locks.pop(key, None)
        return len(stale)

    def _maybe_prune(self) -> None:
        if self._idle_eviction <= 0:
            return
        now = self._clock()
        if now - self._last_prune < self._idle_eviction:
            return
        self._last_prune = now
        removed = self.prune(now)
        if removed:
            LOGGER.debug("Evicted %s idle rate-limit window(s)", removed)

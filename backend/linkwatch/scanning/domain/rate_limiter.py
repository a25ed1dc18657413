"""Sliding-window link rate limiter keyed by (tenant, user)."""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque

from linkwatch.obs import metrics as obs_metrics

Clock = Callable[[], float]


@dataclass(frozen=True)
class RateDecision:
    limited: bool
    count: int
    limit: int


@dataclass(frozen=True)
class RateStatus:
    count: int
    remaining: int
    reset_in_seconds: float


@dataclass
class SlidingWindowRateLimiter:
    """In-process limiter; every timestamp lives in a per-key deque of monotonic seconds."""

    max_links: int = 5
    window_seconds: float = 60.0
    stale_windows: int = 10
    clock: Clock = time.monotonic
    _windows: dict[tuple[str, str], Deque[float]] = field(default_factory=dict)

    def _prune(self, window: Deque[float], now: float) -> None:
        cutoff = now - self.window_seconds
        while window and window[0] <= cutoff:
            window.popleft()

    def observe(self, tenant_id: str, user_id: str) -> RateDecision:
        """Record one link-bearing message and report whether the user is over the limit."""

        now = self.clock()
        key = (tenant_id, user_id)
        window = self._windows.get(key)
        if window is None:
            window = deque()
            self._windows[key] = window
            obs_metrics.RATE_WINDOWS_GAUGE.set(len(self._windows))
        self._prune(window, now)
        window.append(now)
        count = len(window)
        limited = count > self.max_links
        if limited:
            obs_metrics.RATE_LIMIT_HITS_TOTAL.inc()
        return RateDecision(limited=limited, count=count, limit=self.max_links)

    def status(self, tenant_id: str, user_id: str) -> RateStatus:
        now = self.clock()
        window = self._windows.get((tenant_id, user_id))
        if not window:
            return RateStatus(count=0, remaining=self.max_links, reset_in_seconds=0.0)
        self._prune(window, now)
        count = len(window)
        reset_in = max(0.0, window[0] + self.window_seconds - now) if window else 0.0
        return RateStatus(count=count, remaining=max(0, self.max_links - count), reset_in_seconds=reset_in)

    def reset(self, tenant_id: str, user_id: str) -> None:
        self._windows.pop((tenant_id, user_id), None)
        obs_metrics.RATE_WINDOWS_GAUGE.set(len(self._windows))

    def sweep(self) -> int:
        """Evict keys whose newest timestamp is older than ``stale_windows`` windows."""

        now = self.clock()
        cutoff = now - self.window_seconds * self.stale_windows
        stale = [key for key, window in self._windows.items() if not window or window[-1] < cutoff]
        for key in stale:
            del self._windows[key]
        obs_metrics.RATE_WINDOWS_GAUGE.set(len(self._windows))
        return len(stale)

    def __len__(self) -> int:
        return len(self._windows)

"""Evict idle per-user rate windows."""

from __future__ import annotations

import logging

from linkwatch.scanning.domain.rate_limiter import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)


async def run(limiter: SlidingWindowRateLimiter) -> int:
    """Drop windows that have been idle for the configured number of windows."""

    removed = limiter.sweep()
    if removed:
        logger.info("rate windows evicted", extra={"removed": removed, "remaining": len(limiter)})
    return removed

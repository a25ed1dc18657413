"""Utilities for wiring link scanner workers into an event loop."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, Optional

from linkwatch.infra.redis import RedisProxy
from linkwatch.scanning.domain.container import ScannerState
from linkwatch.scanning.jobs import rate_window_gc
from linkwatch.scanning.workers.link_scanner import LinkScannerWorker

logger = logging.getLogger(__name__)


async def _run_forever(worker, delay: float) -> None:
    while True:
        try:
            await worker.run_once()
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001
            logger.exception("worker iteration failed: %s", worker.__class__.__name__)
        await asyncio.sleep(delay)


async def _run_periodic(job: Callable[[], Awaitable[object]], interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await job()
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001
            logger.exception("periodic job failed")


def spawn_workers(
    redis_client: RedisProxy,
    state: ScannerState,
    *,
    ingress_stream: str = "links:ingress",
    cleanup_interval: float = 300.0,
    poll_interval: float = 0.1,
    loop: Optional[asyncio.AbstractEventLoop] = None,
) -> Iterable[asyncio.Task]:
    """Create asyncio tasks for the ingress scanner and the rate-window sweeper."""

    event_loop = loop or asyncio.get_event_loop()
    scanner = LinkScannerWorker(redis=redis_client, pipeline=state.pipeline, ingress_stream=ingress_stream)
    return [
        event_loop.create_task(_run_forever(scanner, poll_interval), name="linkwatch-scanner"),
        event_loop.create_task(
            _run_periodic(lambda: rate_window_gc.run(state.limiter), cleanup_interval),
            name="linkwatch-rate-window-gc",
        ),
    ]

"""Worker that consumes chat messages from the ingress stream and runs the link pipeline."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

from linkwatch.obs import metrics
from linkwatch.scanning.domain.gateway import ChatMessage
from linkwatch.scanning.domain.pipeline import LinkScanPipeline

logger = logging.getLogger(__name__)


class RedisStreams(Protocol):
    async def xread(self, streams: Mapping[str, str], count: int, block: int) -> list[tuple[str, list[tuple[str, Mapping[bytes, bytes]]]]]:
        ...


@dataclass(slots=True)
class LinkScannerWorker:
    """Reads ``links:ingress`` entries and hands each message to the pipeline."""

    redis: RedisStreams
    pipeline: LinkScanPipeline
    ingress_stream: str = "links:ingress"
    batch_size: int = 100
    block_ms: int = 5000
    last_id: str = "$"

    async def run_once(self) -> int:
        messages = await self.redis.xread({self.ingress_stream: self.last_id}, count=self.batch_size, block=self.block_ms)
        if not messages:
            return 0
        processed = 0
        for _stream, entries in messages:
            for entry_id, payload in entries:
                await self._process_entry(entry_id, _decode(payload))
                processed += 1
            if entries:
                self.last_id = entries[-1][0]
        return processed

    async def _process_entry(self, entry_id: str, event: Mapping[str, Any]) -> None:
        start = time.perf_counter()
        status = "error"
        try:
            message = ChatMessage.from_mapping(event)
            outcomes = await self.pipeline.process_message(message)
            status = "scanned" if outcomes else "skipped"
        except KeyError as exc:
            status = "invalid"
            metrics.SCAN_FAILURES_TOTAL.labels("ingress", "missing_field").inc()
            logger.warning("ingress entry missing field", extra={"entry_id": entry_id, "field": str(exc)})
        except Exception as exc:  # noqa: BLE001
            metrics.SCAN_FAILURES_TOTAL.labels("ingress", exc.__class__.__name__).inc()
            logger.exception("link scan failed: entry_id=%s", entry_id)
        finally:
            duration = time.perf_counter() - start
            metrics.SCAN_LATENCY_SECONDS.labels("message").observe(duration)
            metrics.SCAN_JOBS_TOTAL.labels("ingress", status).inc()


def _decode(payload: Mapping[bytes, bytes]) -> Mapping[str, Any]:
    decoded: dict[str, Any] = {}
    for key, value in payload.items():
        decoded_key = key.decode("utf-8") if isinstance(key, bytes) else str(key)
        decoded_value = value.decode("utf-8") if isinstance(value, bytes) else value
        decoded[decoded_key] = decoded_value
    return decoded

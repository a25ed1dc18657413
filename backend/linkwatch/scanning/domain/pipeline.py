"""Message-level orchestration: extract, rate-limit, scan, decide, enforce, record."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from linkwatch.obs import logging as obs_logging
from linkwatch.obs import metrics as obs_metrics
from linkwatch.scanning.domain.audit import AuditRepository, LinkLogEntry
from linkwatch.scanning.domain.enforcement import EnforcementDispatcher, EnforcementResult
from linkwatch.scanning.domain.gateway import ChatMessage
from linkwatch.scanning.domain.rate_limiter import SlidingWindowRateLimiter
from linkwatch.scanning.domain.tenants import TenantSettings, TenantSettingsService
from linkwatch.scanning.domain.tiers import TierDecision, TierDecisionEngine
from linkwatch.scanning.domain.url_parsing import extract_urls
from linkwatch.scanning.domain.verdicts import Verdict, VerdictAggregator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScanOutcome:
    url: str
    verdict: Verdict
    decision: TierDecision
    enforcement: Optional[EnforcementResult] = None

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "url": self.url,
            "verdict": self.verdict.to_dict(),
            "decision": self.decision.to_dict(),
        }
        if self.enforcement is not None:
            payload["enforcement"] = {
                "outcome": self.enforcement.outcome,
                "message_removed": self.enforcement.message_removed,
                "author_notified": self.enforcement.author_notified,
                "review_id": self.enforcement.review_id,
            }
        return payload


class LinkScanPipeline:
    def __init__(
        self,
        *,
        aggregator: VerdictAggregator,
        engine: TierDecisionEngine,
        dispatcher: EnforcementDispatcher,
        limiter: SlidingWindowRateLimiter,
        audit: AuditRepository,
        tenants: TenantSettingsService,
    ) -> None:
        self.aggregator = aggregator
        self.engine = engine
        self.dispatcher = dispatcher
        self.limiter = limiter
        self.audit = audit
        self.tenants = tenants

    async def process_message(self, message: ChatMessage) -> list[ScanOutcome]:
        """Scan every unique URL in ``message``; one URL failing never stops the others."""

        if message.author_is_bot:
            return []
        urls = extract_urls(message.content)
        if not urls:
            return []
        tenant = await self._tenant(message.tenant_id)
        if not tenant.scanning_enabled:
            return []

        tokens = obs_logging.bind_context(
            tenant_id=message.tenant_id,
            channel_id=message.channel_id,
            user_id=message.user_id,
            message_id=message.message_id,
        )
        try:
            rate = self.limiter.observe(message.tenant_id, message.user_id)
            if rate.limited:
                logger.info("link rate limit exceeded", extra={"count": rate.count, "limit": rate.limit})
            verdicts = await asyncio.gather(
                *(self.aggregator.scan(url, message.tenant_id, rate_limited=rate.limited) for url in urls),
                return_exceptions=True,
            )
            outcomes: list[ScanOutcome] = []
            for url, verdict in zip(urls, verdicts):
                if isinstance(verdict, BaseException):
                    self._scan_failed(url, verdict)
                    continue
                outcomes.append(await self._enforce(url, verdict, message, tenant))
            return outcomes
        finally:
            obs_logging.reset_context(tokens)

    async def scan_only(self, url: str, tenant_id: str) -> ScanOutcome:
        """Dry run: verdict and tier without side effects or audit records."""

        verdict = await self.aggregator.scan(url, tenant_id)
        return ScanOutcome(url=url, verdict=verdict, decision=self.engine.explain(verdict))

    async def _enforce(self, url: str, verdict: Verdict, message: ChatMessage, tenant: TenantSettings) -> ScanOutcome:
        decision = self.engine.explain(verdict)
        obs_metrics.TIER_DECISIONS_TOTAL.labels(decision.tier.label).inc()
        try:
            result = await self.dispatcher.dispatch(decision.tier, verdict, message, log_channel_id=tenant.log_channel_id)
        except Exception as exc:  # noqa: BLE001
            # Still audited: every scanned URL gets exactly one record.
            self._scan_failed(url, exc)
            result = EnforcementResult(tier=decision.tier, outcome=f"{decision.tier.label.lower()}_failed")
        await self._record(message, verdict, result)
        logger.info(
            "link scanned",
            extra={
                "domain": verdict.resolved_domain,
                "tier": decision.tier.label,
                "signals": [signal.value for signal in verdict.signals],
                "score": verdict.heuristic_score,
                "duration_ms": verdict.scan_duration_ms,
            },
        )
        return ScanOutcome(url=url, verdict=verdict, decision=decision, enforcement=result)

    async def _record(self, message: ChatMessage, verdict: Verdict, result: EnforcementResult) -> None:
        entry = LinkLogEntry(
            tenant_id=message.tenant_id,
            channel_id=message.channel_id,
            message_id=message.message_id,
            user_id=message.user_id,
            verdict=verdict,
            tier=result.tier,
            outcome=result.outcome,
        )
        try:
            await self.audit.record_link(entry)
        except Exception as exc:  # noqa: BLE001
            obs_metrics.STORAGE_FAILURES_TOTAL.labels("record_link").inc()
            logger.error("link log write failed", extra={"error": str(exc)})
        try:
            await self.audit.bump_user_stats(message.tenant_id, message.user_id, result.tier)
        except Exception as exc:  # noqa: BLE001
            obs_metrics.STORAGE_FAILURES_TOTAL.labels("bump_user_stats").inc()
            logger.error("user stats update failed", extra={"error": str(exc)})

    async def _tenant(self, tenant_id: str) -> TenantSettings:
        try:
            return await self.tenants.get(tenant_id)
        except Exception as exc:  # noqa: BLE001
            obs_metrics.STORAGE_FAILURES_TOTAL.labels("tenant_settings").inc()
            logger.warning("tenant settings unavailable; using defaults", extra={"tenant_id": tenant_id, "error": str(exc)})
            return TenantSettings(tenant_id=tenant_id)

    @staticmethod
    def _scan_failed(url: str, exc: BaseException) -> None:
        obs_metrics.SCAN_FAILURES_TOTAL.labels("pipeline", exc.__class__.__name__).inc()
        logger.error("link scan failed", extra={"url": url, "error": str(exc)}, exc_info=exc)

"""Tier-specific side effects against the chat platform."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from linkwatch.obs import metrics as obs_metrics
from linkwatch.scanning.domain.gateway import ChatGateway, ChatMessage, MessageNotFound
from linkwatch.scanning.domain.review import ReviewQueue
from linkwatch.scanning.domain.signals import Tier
from linkwatch.scanning.domain.tiers import TIER_SPECS
from linkwatch.scanning.domain.verdicts import Verdict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnforcementResult:
    tier: Tier
    outcome: str
    message_removed: bool = False
    author_notified: bool = False
    review_id: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return not self.outcome.endswith("_failed")


def build_notice(tier: Tier, verdict: Verdict, message: ChatMessage) -> dict[str, Any]:
    """Structured payload the gateway renders into a platform-specific embed."""

    spec = TIER_SPECS[tier]
    return {
        "tier": tier.label,
        "title": spec.label,
        "description": spec.description,
        "colour": spec.colour,
        "tenant_id": message.tenant_id,
        "channel_id": message.channel_id,
        "message_id": message.message_id,
        "user_id": message.user_id,
        "original_url": verdict.original_url,
        "resolved_url": verdict.resolved_url,
        "domain": verdict.resolved_domain,
        "heuristic_score": verdict.heuristic_score,
        "signals": [signal.value for signal in verdict.signals],
        "threat_types": list(verdict.threat_types),
        "domain_age_days": verdict.domain_age_days,
        "redirect_hops": verdict.redirect_hops,
    }


class EnforcementDispatcher:
    """Executes one category of side effect per tier and reports an outcome tag."""

    def __init__(self, gateway: ChatGateway, review_queue: ReviewQueue, *, warn_message_ttl_ms: int = 300000) -> None:
        self.gateway = gateway
        self.review_queue = review_queue
        self.warn_message_ttl_ms = warn_message_ttl_ms

    async def dispatch(
        self,
        tier: Tier,
        verdict: Verdict,
        message: ChatMessage,
        *,
        log_channel_id: Optional[str] = None,
    ) -> EnforcementResult:
        notice = build_notice(tier, verdict, message)
        if tier is Tier.DELETE:
            result = await self._delete(verdict, message, notice, log_channel_id)
        elif tier is Tier.QUARANTINE:
            result = await self._quarantine(verdict, message, notice, log_channel_id)
        elif tier is Tier.WARN:
            result = await self._warn(message, notice, log_channel_id)
        else:
            result = await self._safe(message, notice, log_channel_id)
        obs_metrics.ENFORCEMENT_OUTCOMES_TOTAL.labels(result.outcome).inc()
        logger.info(
            "enforcement dispatched",
            extra={"tier": tier.label, "outcome": result.outcome, "domain": verdict.resolved_domain},
        )
        return result

    async def _safe(self, message: ChatMessage, notice: dict[str, Any], log_channel_id: Optional[str]) -> EnforcementResult:
        logged = await self._post_log(message, notice, log_channel_id)
        return EnforcementResult(tier=Tier.SAFE, outcome="logged" if logged else "allowed")

    async def _warn(self, message: ChatMessage, notice: dict[str, Any], log_channel_id: Optional[str]) -> EnforcementResult:
        try:
            await self.gateway.post_warning(message, notice, delete_after_ms=self.warn_message_ttl_ms)
        except Exception as exc:  # noqa: BLE001
            self._action_failed("post_warning", message, exc)
            return EnforcementResult(tier=Tier.WARN, outcome="warn_failed")
        await self._post_log(message, notice, log_channel_id)
        return EnforcementResult(tier=Tier.WARN, outcome="warned")

    async def _quarantine(
        self,
        verdict: Verdict,
        message: ChatMessage,
        notice: dict[str, Any],
        log_channel_id: Optional[str],
    ) -> EnforcementResult:
        removed = await self._remove(message)
        try:
            entry = await self.review_queue.enqueue(message, verdict)
        except Exception as exc:  # noqa: BLE001
            self._action_failed("review_enqueue", message, exc)
            return EnforcementResult(tier=Tier.QUARANTINE, outcome="quarantine_failed", message_removed=removed)
        notice["review_id"] = entry.id
        await self._post_log(message, notice, log_channel_id)
        outcome = "quarantined" if removed else "quarantine_failed"
        return EnforcementResult(tier=Tier.QUARANTINE, outcome=outcome, message_removed=removed, review_id=entry.id)

    async def _delete(
        self,
        verdict: Verdict,
        message: ChatMessage,
        notice: dict[str, Any],
        log_channel_id: Optional[str],
    ) -> EnforcementResult:
        removed = await self._remove(message)
        notified = False
        try:
            await self.gateway.notify_author(message, notice)
            notified = True
        except Exception as exc:  # noqa: BLE001
            self._action_failed("notify_author", message, exc)
        notice["author_notified"] = notified
        await self._post_log(message, notice, log_channel_id)
        return EnforcementResult(
            tier=Tier.DELETE,
            outcome="deleted" if removed else "delete_failed",
            message_removed=removed,
            author_notified=notified,
        )

    async def _remove(self, message: ChatMessage) -> bool:
        try:
            await self.gateway.delete_message(message)
        except MessageNotFound:
            # Already gone counts as removed.
            return True
        except Exception as exc:  # noqa: BLE001
            self._action_failed("delete_message", message, exc)
            return False
        return True

    async def _post_log(self, message: ChatMessage, notice: dict[str, Any], log_channel_id: Optional[str]) -> bool:
        if not log_channel_id:
            return False
        try:
            await self.gateway.post_log(message.tenant_id, log_channel_id, notice)
        except Exception as exc:  # noqa: BLE001
            self._action_failed("post_log", message, exc)
            return False
        return True

    @staticmethod
    def _action_failed(action: str, message: ChatMessage, exc: BaseException) -> None:
        obs_metrics.mark_upstream_failure("gateway", exc)
        logger.warning(
            "enforcement action failed",
            extra={"action": action, "message_id": message.message_id, "error": str(exc) or exc.__class__.__name__},
        )

"""Tier table and the first-match decision engine."""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from linkwatch.scanning.domain.signals import Signal, Tier
from linkwatch.scanning.domain.verdicts import Verdict


@dataclass(frozen=True)
class TierSpec:
    tier: Tier
    label: str
    description: str
    colour: int
    triggers: frozenset[Signal]


TIER_SPECS: Mapping[Tier, TierSpec] = MappingProxyType(
    {
        Tier.SAFE: TierSpec(
            tier=Tier.SAFE,
            label="Safe",
            description="No risk signals; the message is left alone.",
            colour=0x2ECC71,
            triggers=frozenset(),
        ),
        Tier.WARN: TierSpec(
            tier=Tier.WARN,
            label="Warning",
            description="Low-risk signals; a temporary channel warning is posted.",
            colour=0xF1C40F,
            triggers=frozenset(
                {Signal.YOUNG_DOMAIN, Signal.RATE_LIMIT_HIT, Signal.HEURISTIC_LOW, Signal.REPUTATION_UNAVAILABLE}
            ),
        ),
        Tier.QUARANTINE: TierSpec(
            tier=Tier.QUARANTINE,
            label="Quarantine",
            description="Moderate risk; the message is held for moderator review.",
            colour=0xE67E22,
            triggers=frozenset({Signal.HEURISTIC_HIGH, Signal.YOUNG_DOMAIN_PLUS, Signal.MULTIPLE_RISK_FACTORS}),
        ),
        Tier.DELETE: TierSpec(
            tier=Tier.DELETE,
            label="Deleted",
            description="Known-bad or critical risk; the message is removed and the author notified.",
            colour=0xE74C3C,
            triggers=frozenset(
                {
                    Signal.BLOCKLIST_HIT,
                    Signal.SAFE_BROWSING_MATCH,
                    Signal.KNOWN_MALWARE,
                    Signal.PHISHING_DETECTED,
                    Signal.HEURISTIC_CRITICAL,
                }
            ),
        ),
    }
)

_EVALUATION_ORDER = (Tier.DELETE, Tier.QUARANTINE, Tier.WARN)


@dataclass(frozen=True)
class TierDecision:
    tier: Tier
    triggered_by: tuple[Signal, ...]
    reason: str

    def to_dict(self) -> dict[str, object]:
        return {
            "tier": self.tier.label,
            "triggered_by": [signal.value for signal in self.triggered_by],
            "reason": self.reason,
        }


class TierDecisionEngine:
    """Maps a verdict to exactly one tier; allowlist first, then DELETE, QUARANTINE, WARN."""

    def __init__(self, specs: Mapping[Tier, TierSpec] = TIER_SPECS) -> None:
        self.specs = specs

    def decide(self, verdict: Verdict) -> Tier:
        return self.explain(verdict).tier

    def explain(self, verdict: Verdict) -> TierDecision:
        return self._evaluate(verdict)

    def _evaluate(self, verdict: Verdict) -> TierDecision:
        if verdict.is_allowlisted:
            return TierDecision(tier=Tier.SAFE, triggered_by=(), reason="allowlisted")
        for tier in _EVALUATION_ORDER:
            triggers = self.specs[tier].triggers
            matched = tuple(signal for signal in verdict.signals if signal in triggers)
            if tier is Tier.DELETE and verdict.is_blocklisted and Signal.BLOCKLIST_HIT not in matched:
                return TierDecision(tier=tier, triggered_by=matched, reason="blocklisted")
            if matched:
                return TierDecision(tier=tier, triggered_by=matched, reason="signals")
        return TierDecision(tier=Tier.SAFE, triggered_by=(), reason="no triggers")

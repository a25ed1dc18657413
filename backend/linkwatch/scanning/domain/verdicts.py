"""Verdict aggregation: fan out to every signal source and derive one immutable verdict."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Iterable, Mapping, TypeVar

from linkwatch.obs import metrics as obs_metrics
from linkwatch.scanning.domain.domain_lists import DomainListChecker
from linkwatch.scanning.domain.heuristics import HeuristicResult, HeuristicScorer
from linkwatch.scanning.domain.redirects import RedirectResolver, RedirectResult
from linkwatch.scanning.domain.signals import Signal, canonical
from linkwatch.scanning.domain.threat_intel import DomainAgeClient, ReputationResult, SafeBrowsingClient
from linkwatch.scanning.domain.url_parsing import domain_of

logger = logging.getLogger(__name__)

T = TypeVar("T")

STRUCTURAL_SIGNALS = frozenset(
    {
        Signal.MANY_SUBDOMAINS,
        Signal.LONG_URL,
        Signal.IP_ADDRESS,
        Signal.UNUSUAL_TLD,
        Signal.SUSPICIOUS_PATH,
        Signal.OBFUSCATED_PATH,
        Signal.TYPOSQUAT,
    }
)
HIGH_RISK_SIGNALS = frozenset(
    {
        Signal.TYPOSQUAT,
        Signal.IP_ADDRESS,
        Signal.SUSPICIOUS_PATH,
        Signal.UNUSUAL_TLD,
        Signal.YOUNG_DOMAIN,
        Signal.HOMOGRAPH,
    }
)
YOUNG_PLUS_MIN_STRUCTURAL = 2
MULTIPLE_RISK_MIN = 3
REDIRECT_GRACE_SECONDS = 1.0


@dataclass(frozen=True)
class HeuristicThresholds:
    warn: int = 25
    quarantine: int = 50
    delete: int = 75


@dataclass(frozen=True)
class Verdict:
    """Everything the decision and enforcement stages may know about one URL."""

    original_url: str
    resolved_url: str
    original_domain: str
    resolved_domain: str
    signals: tuple[Signal, ...] = ()
    heuristic_score: int = 0
    threat_types: tuple[str, ...] = ()
    domain_age_days: int | None = None
    is_allowlisted: bool = False
    is_blocklisted: bool = False
    redirect_hops: int = 0
    heuristic_details: Mapping[str, Any] = field(default_factory=dict)
    scan_duration_ms: int = 0

    def has(self, signal: Signal) -> bool:
        return signal in self.signals

    def to_dict(self) -> dict[str, Any]:
        return {
            "original_url": self.original_url,
            "resolved_url": self.resolved_url,
            "original_domain": self.original_domain,
            "resolved_domain": self.resolved_domain,
            "signals": [signal.value for signal in self.signals],
            "heuristic_score": self.heuristic_score,
            "threat_types": list(self.threat_types),
            "domain_age_days": self.domain_age_days,
            "is_allowlisted": self.is_allowlisted,
            "is_blocklisted": self.is_blocklisted,
            "redirect_hops": self.redirect_hops,
            "heuristic_details": dict(self.heuristic_details),
            "scan_duration_ms": self.scan_duration_ms,
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "Verdict":
        signals = []
        for name in data.get("signals") or ():
            try:
                signals.append(Signal(name))
            except ValueError:
                logger.warning("dropping unknown stored signal %s", name)
        age = data.get("domain_age_days")
        return Verdict(
            original_url=str(data.get("original_url", "")),
            resolved_url=str(data.get("resolved_url") or data.get("original_url", "")),
            original_domain=str(data.get("original_domain", "")),
            resolved_domain=str(data.get("resolved_domain") or data.get("original_domain", "")),
            signals=canonical(signals),
            heuristic_score=int(data.get("heuristic_score") or 0),
            threat_types=tuple(str(item) for item in data.get("threat_types") or ()),
            domain_age_days=int(age) if age is not None else None,
            is_allowlisted=bool(data.get("is_allowlisted")),
            is_blocklisted=bool(data.get("is_blocklisted")),
            redirect_hops=int(data.get("redirect_hops") or 0),
            heuristic_details=dict(data.get("heuristic_details") or {}),
            scan_duration_ms=int(data.get("scan_duration_ms") or 0),
        )


@dataclass(frozen=True)
class ScanFacts:
    """Raw results collected for one URL before signal derivation."""

    heuristic_score: int = 0
    heuristic_signals: tuple[Signal, ...] = ()
    threat_types: tuple[str, ...] = ()
    is_blocklisted: bool = False
    domain_ages: tuple[int | None, ...] = ()
    rate_limited: bool = False
    reputation_unavailable: bool = False


def youngest_age(ages: Iterable[int | None]) -> int | None:
    known = [age for age in ages if age is not None]
    return min(known) if known else None


def derive_signals(
    facts: ScanFacts,
    *,
    thresholds: HeuristicThresholds,
    domain_age_threshold_days: int,
) -> tuple[Signal, ...]:
    """Pure, idempotent derivation of the final signal set from collected facts."""

    found: set[Signal] = set(facts.heuristic_signals)
    if facts.threat_types:
        found.add(Signal.SAFE_BROWSING_MATCH)
        if "MALWARE" in facts.threat_types:
            found.add(Signal.KNOWN_MALWARE)
        if "SOCIAL_ENGINEERING" in facts.threat_types:
            found.add(Signal.PHISHING_DETECTED)
    if facts.is_blocklisted:
        found.add(Signal.BLOCKLIST_HIT)

    age = youngest_age(facts.domain_ages)
    if age is not None and age < domain_age_threshold_days:
        found.add(Signal.YOUNG_DOMAIN)
        if len(found & STRUCTURAL_SIGNALS) >= YOUNG_PLUS_MIN_STRUCTURAL:
            found.add(Signal.YOUNG_DOMAIN_PLUS)
    if len(found & HIGH_RISK_SIGNALS) >= MULTIPLE_RISK_MIN:
        found.add(Signal.MULTIPLE_RISK_FACTORS)

    score = facts.heuristic_score
    if score >= thresholds.delete:
        found.add(Signal.HEURISTIC_CRITICAL)
    elif score >= thresholds.quarantine:
        found.add(Signal.HEURISTIC_HIGH)
    elif score >= thresholds.warn:
        found.add(Signal.HEURISTIC_LOW)

    if facts.rate_limited:
        found.add(Signal.RATE_LIMIT_HIT)
    if facts.reputation_unavailable:
        found.add(Signal.REPUTATION_UNAVAILABLE)
    return canonical(found)


def _merge_unique(*groups: Iterable[str]) -> tuple[str, ...]:
    merged: list[str] = []
    for group in groups:
        for item in group:
            if item not in merged:
                merged.append(item)
    return tuple(merged)


@dataclass
class VerdictAggregator:
    """Runs list checks, redirect resolution, heuristics and threat intel for one URL."""

    lists: DomainListChecker
    redirects: RedirectResolver
    scorer: HeuristicScorer
    reputation: SafeBrowsingClient
    domain_age: DomainAgeClient
    thresholds: HeuristicThresholds = field(default_factory=HeuristicThresholds)
    domain_age_threshold_days: int = 30
    reputation_fail_open: bool = True
    heuristics_enabled: bool = True
    list_timeout_seconds: float = 2.0
    redirect_timeout_seconds: float = 15.0
    reputation_timeout_seconds: float = 6.0
    age_timeout_seconds: float = 6.0

    async def scan(self, url: str, tenant_id: str, *, rate_limited: bool = False) -> Verdict:
        started = time.perf_counter()
        original_domain = domain_of(url)

        allowed, blocked = await asyncio.gather(
            self._guard("allowlist", self.lists.is_allowed(original_domain, tenant_id), self.list_timeout_seconds, False),
            self._guard("blocklist", self.lists.is_blocked(original_domain, tenant_id), self.list_timeout_seconds, False),
        )
        if allowed:
            return Verdict(
                original_url=url,
                resolved_url=url,
                original_domain=original_domain,
                resolved_domain=original_domain,
                is_allowlisted=True,
                scan_duration_ms=self._elapsed_ms(started),
            )

        redirect, reputation, original_age = await asyncio.gather(
            self._guard(
                "redirects",
                self.redirects.resolve(url, budget_seconds=self.redirect_timeout_seconds),
                # The resolver keeps the hops it reached within the budget; this only caps a stuck resolver.
                self.redirect_timeout_seconds + REDIRECT_GRACE_SECONDS,
                RedirectResult.unresolved(url, error="timeout"),
            ),
            self._guard(
                "safebrowsing",
                self.reputation.check_url(url),
                self.reputation_timeout_seconds,
                ReputationResult(is_threat=False, error="timeout"),
            ),
            self._guard("whois", self.domain_age.age_days(original_domain), self.age_timeout_seconds, None),
        )
        heuristic = self._score(url)

        reputations = [reputation]
        ages: list[int | None] = [original_age]
        resolved_domain = redirect.final_domain or original_domain
        if resolved_domain != original_domain:
            resolved_blocked, resolved_reputation, resolved_age = await asyncio.gather(
                self._guard("blocklist", self.lists.is_blocked(resolved_domain, tenant_id), self.list_timeout_seconds, False),
                self._guard(
                    "safebrowsing",
                    self.reputation.check_url(redirect.final_url),
                    self.reputation_timeout_seconds,
                    ReputationResult(is_threat=False, error="timeout"),
                ),
                self._guard("whois", self.domain_age.age_days(resolved_domain), self.age_timeout_seconds, None),
            )
            blocked = blocked or resolved_blocked
            reputations.append(resolved_reputation)
            ages.append(resolved_age)
            logger.info(
                "redirect crossed domains",
                extra={"original_domain": original_domain, "resolved_domain": resolved_domain, "hops": redirect.hop_count},
            )

        facts = ScanFacts(
            heuristic_score=heuristic.score,
            heuristic_signals=heuristic.signals,
            threat_types=_merge_unique(*(item.threat_types for item in reputations)),
            is_blocklisted=bool(blocked),
            domain_ages=tuple(ages),
            rate_limited=rate_limited,
            reputation_unavailable=not self.reputation_fail_open and any(item.error for item in reputations),
        )
        signals = derive_signals(facts, thresholds=self.thresholds, domain_age_threshold_days=self.domain_age_threshold_days)
        for signal in signals:
            obs_metrics.SIGNALS_TOTAL.labels(signal.value).inc()
        return Verdict(
            original_url=url,
            resolved_url=redirect.final_url,
            original_domain=original_domain,
            resolved_domain=resolved_domain,
            signals=signals,
            heuristic_score=heuristic.score,
            threat_types=facts.threat_types,
            domain_age_days=youngest_age(ages),
            is_allowlisted=False,
            is_blocklisted=bool(blocked),
            redirect_hops=redirect.hop_count,
            heuristic_details=heuristic.details,
            scan_duration_ms=self._elapsed_ms(started),
        )

    def _score(self, url: str) -> HeuristicResult:
        if not self.heuristics_enabled:
            return HeuristicResult(score=0, signals=())
        return self.scorer.score(url)

    async def _guard(self, source: str, operation: Awaitable[T], timeout: float, fallback: T) -> T:
        """Await ``operation`` under ``timeout``; any failure degrades to ``fallback``."""

        stage_started = time.perf_counter()
        try:
            return await asyncio.wait_for(operation, timeout=timeout)
        except Exception as exc:  # noqa: BLE001
            obs_metrics.mark_upstream_failure(source, exc)
            logger.warning("scan stage degraded", extra={"stage": source, "error": exc.__class__.__name__})
            return fallback
        finally:
            obs_metrics.SCAN_LATENCY_SECONDS.labels(source).observe(time.perf_counter() - stage_started)

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        elapsed = time.perf_counter() - started
        obs_metrics.SCAN_LATENCY_SECONDS.labels("aggregate").observe(elapsed)
        return int(elapsed * 1000)

import asyncio

import httpx
import pytest

from linkwatch.scanning.domain.domain_lists import DomainListChecker, InMemoryDomainListRepository
from linkwatch.scanning.domain.heuristics import HeuristicScorer
from linkwatch.scanning.domain.redirects import RedirectResolver, RedirectResult
from linkwatch.scanning.domain.signals import Signal
from linkwatch.scanning.domain.threat_intel import ReputationResult
from linkwatch.scanning.domain.verdicts import (
    HeuristicThresholds,
    ScanFacts,
    Verdict,
    VerdictAggregator,
    derive_signals,
)

THRESHOLDS = HeuristicThresholds()


class StubRedirects:
    def __init__(self, targets: dict[str, str] | None = None) -> None:
        self.targets = targets or {}
        self.calls: list[str] = []
        self.budgets: list[float | None] = []

    async def resolve(self, url: str, *, budget_seconds: float | None = None) -> RedirectResult:
        self.calls.append(url)
        self.budgets.append(budget_seconds)
        final = self.targets.get(url)
        if final is None:
            return RedirectResult.unresolved(url)
        return RedirectResult(
            original_url=url,
            final_url=final,
            final_domain=final.split("/")[2],
            hop_count=1,
            chain=(url, final),
        )


class StubReputation:
    def __init__(self, threats: dict[str, tuple[str, ...]] | None = None, error: str | None = None) -> None:
        self.threats = threats or {}
        self.error = error
        self.calls: list[str] = []

    async def check_url(self, url: str) -> ReputationResult:
        self.calls.append(url)
        if self.error:
            return ReputationResult(is_threat=False, error=self.error)
        types = self.threats.get(url, ())
        return ReputationResult(is_threat=bool(types), threat_types=types)


class StubAges:
    def __init__(self, ages: dict[str, int] | None = None, delay: float = 0.0) -> None:
        self.ages = ages or {}
        self.delay = delay

    async def age_days(self, domain: str) -> int | None:
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.ages.get(domain)


def _aggregator(*, redirects=None, reputation=None, ages=None, lists=None, **kwargs) -> VerdictAggregator:
    return VerdictAggregator(
        lists=lists or DomainListChecker(InMemoryDomainListRepository()),
        redirects=redirects or StubRedirects(),
        scorer=HeuristicScorer(),
        reputation=reputation or StubReputation(),
        domain_age=ages or StubAges(),
        **kwargs,
    )


def test_derive_signals_is_order_independent_and_idempotent() -> None:
    forward = ScanFacts(heuristic_signals=(Signal.UNUSUAL_TLD, Signal.SUSPICIOUS_PATH), domain_ages=(3,))
    backward = ScanFacts(heuristic_signals=(Signal.SUSPICIOUS_PATH, Signal.UNUSUAL_TLD), domain_ages=(3,))

    first = derive_signals(forward, thresholds=THRESHOLDS, domain_age_threshold_days=30)
    assert first == derive_signals(backward, thresholds=THRESHOLDS, domain_age_threshold_days=30)
    assert first == derive_signals(forward, thresholds=THRESHOLDS, domain_age_threshold_days=30)
    assert first == (
        Signal.UNUSUAL_TLD,
        Signal.SUSPICIOUS_PATH,
        Signal.YOUNG_DOMAIN,
        Signal.YOUNG_DOMAIN_PLUS,
        Signal.MULTIPLE_RISK_FACTORS,
    )


def test_young_domain_plus_needs_two_structural_signals() -> None:
    facts = ScanFacts(heuristic_signals=(Signal.UNUSUAL_TLD,), domain_ages=(5,))
    signals = derive_signals(facts, thresholds=THRESHOLDS, domain_age_threshold_days=30)
    assert Signal.YOUNG_DOMAIN in signals
    assert Signal.YOUNG_DOMAIN_PLUS not in signals


def test_unknown_age_is_never_young() -> None:
    facts = ScanFacts(heuristic_signals=(Signal.UNUSUAL_TLD, Signal.SUSPICIOUS_PATH), domain_ages=(None, None))
    signals = derive_signals(facts, thresholds=THRESHOLDS, domain_age_threshold_days=30)
    assert Signal.YOUNG_DOMAIN not in signals


def test_youngest_known_age_wins() -> None:
    facts = ScanFacts(domain_ages=(4000, None, 2))
    assert Signal.YOUNG_DOMAIN in derive_signals(facts, thresholds=THRESHOLDS, domain_age_threshold_days=30)


@pytest.mark.parametrize(
    "score,expected",
    [
        (0, None),
        (25, Signal.HEURISTIC_LOW),
        (55, Signal.HEURISTIC_HIGH),
        (90, Signal.HEURISTIC_CRITICAL),
    ],
)
def test_exactly_one_heuristic_band(score: int, expected: Signal | None) -> None:
    signals = derive_signals(ScanFacts(heuristic_score=score), thresholds=THRESHOLDS, domain_age_threshold_days=30)
    bands = {Signal.HEURISTIC_LOW, Signal.HEURISTIC_HIGH, Signal.HEURISTIC_CRITICAL}
    found = [signal for signal in signals if signal in bands]
    assert found == ([expected] if expected else [])


def test_threat_types_map_to_signals() -> None:
    facts = ScanFacts(threat_types=("MALWARE", "SOCIAL_ENGINEERING"), is_blocklisted=True, rate_limited=True)
    signals = derive_signals(facts, thresholds=THRESHOLDS, domain_age_threshold_days=30)
    assert {
        Signal.SAFE_BROWSING_MATCH,
        Signal.KNOWN_MALWARE,
        Signal.PHISHING_DETECTED,
        Signal.BLOCKLIST_HIT,
        Signal.RATE_LIMIT_HIT,
    } <= set(signals)


@pytest.mark.asyncio
async def test_allowlisted_domain_short_circuits() -> None:
    lists = DomainListChecker(InMemoryDomainListRepository())
    await lists.add_allowed("guild-1", "paypa1.com")
    redirects = StubRedirects()
    reputation = StubReputation()

    verdict = await _aggregator(lists=lists, redirects=redirects, reputation=reputation).scan("https://paypa1.com/login", "guild-1")

    assert verdict.is_allowlisted
    assert verdict.signals == ()
    assert redirects.calls == []
    assert reputation.calls == []


@pytest.mark.asyncio
async def test_redirect_target_is_checked_against_lists_intel_and_age() -> None:
    lists = DomainListChecker(InMemoryDomainListRepository())
    await lists.add_blocked("guild-1", "landing.example.net")
    redirects = StubRedirects({"https://short.example.com/abc": "https://landing.example.net/x"})
    reputation = StubReputation({"https://landing.example.net/x": ("MALWARE",)})
    ages = StubAges({"short.example.com": 3000, "landing.example.net": 4})

    verdict = await _aggregator(lists=lists, redirects=redirects, reputation=reputation, ages=ages).scan(
        "https://short.example.com/abc", "guild-1"
    )

    assert verdict.resolved_domain == "landing.example.net"
    assert verdict.is_blocklisted
    assert verdict.domain_age_days == 4
    assert verdict.redirect_hops == 1
    assert verdict.threat_types == ("MALWARE",)
    assert {Signal.BLOCKLIST_HIT, Signal.KNOWN_MALWARE, Signal.YOUNG_DOMAIN} <= set(verdict.signals)
    assert reputation.calls == ["https://short.example.com/abc", "https://landing.example.net/x"]


@pytest.mark.asyncio
async def test_allowlist_on_resolved_domain_does_not_bypass() -> None:
    lists = DomainListChecker(InMemoryDomainListRepository())
    await lists.add_allowed("guild-1", "landing.example.net")
    redirects = StubRedirects({"https://short.example.com/abc": "https://landing.example.net/x"})
    reputation = StubReputation({"https://landing.example.net/x": ("SOCIAL_ENGINEERING",)})

    verdict = await _aggregator(lists=lists, redirects=redirects, reputation=reputation).scan(
        "https://short.example.com/abc", "guild-1"
    )

    assert not verdict.is_allowlisted
    assert Signal.PHISHING_DETECTED in verdict.signals


@pytest.mark.asyncio
async def test_reputation_outage_policy() -> None:
    fail_open = await _aggregator(reputation=StubReputation(error="ConnectTimeout")).scan("https://example.com/", "guild-1")
    assert Signal.REPUTATION_UNAVAILABLE not in fail_open.signals

    fail_closed = await _aggregator(reputation=StubReputation(error="ConnectTimeout"), reputation_fail_open=False).scan(
        "https://example.com/", "guild-1"
    )
    assert Signal.REPUTATION_UNAVAILABLE in fail_closed.signals


@pytest.mark.asyncio
async def test_slow_source_degrades_to_fallback() -> None:
    aggregator = _aggregator(ages=StubAges({"example.com": 1}, delay=1.0), age_timeout_seconds=0.01)
    verdict = await aggregator.scan("https://example.com/", "guild-1")
    assert verdict.domain_age_days is None
    assert Signal.YOUNG_DOMAIN not in verdict.signals


def test_verdict_dict_round_trip_drops_unknown_signals() -> None:
    verdict = Verdict(
        original_url="https://a.example.com/",
        resolved_url="https://b.example.com/",
        original_domain="a.example.com",
        resolved_domain="b.example.com",
        signals=(Signal.UNUSUAL_TLD, Signal.HEURISTIC_LOW),
        heuristic_score=25,
        domain_age_days=7,
    )
    data = verdict.to_dict()
    data["signals"].append("RETIRED_SIGNAL")
    restored = Verdict.from_dict(data)
    assert restored == verdict


@pytest.mark.asyncio
async def test_aggregator_passes_chain_budget_to_resolver() -> None:
    redirects = StubRedirects()
    await _aggregator(redirects=redirects, redirect_timeout_seconds=4.0).scan("https://example.com/", "guild-1")
    assert redirects.budgets == [4.0]


@pytest.mark.asyncio
async def test_slow_redirect_chain_still_checks_reached_domain() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "short.example.com":
            return httpx.Response(301, headers={"Location": "https://evil-target.com/payload"})
        await asyncio.sleep(1.0)
        return httpx.Response(200)

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    lists = DomainListChecker(InMemoryDomainListRepository())
    await lists.add_blocked("guild-1", "evil-target.com")
    reputation = StubReputation()
    aggregator = _aggregator(
        lists=lists,
        redirects=RedirectResolver(http=http, timeout_seconds=5.0),
        reputation=reputation,
        redirect_timeout_seconds=0.3,
    )

    verdict = await aggregator.scan("https://short.example.com/x", "guild-1")
    await http.aclose()

    assert verdict.resolved_domain == "evil-target.com"
    assert verdict.redirect_hops == 1
    assert verdict.is_blocklisted
    assert Signal.BLOCKLIST_HIT in verdict.signals
    assert reputation.calls == ["https://short.example.com/x", "https://evil-target.com/payload"]

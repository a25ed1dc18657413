"""Lightweight service container shared by the scanner workers and API routes."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import asyncpg
import httpx

from linkwatch.infra.redis import RedisProxy, redis_client
from linkwatch.scanning.domain.audit import AuditRepository, InMemoryAuditRepository
from linkwatch.scanning.domain.caching import InMemoryTtlCache, RedisTtlCache, TtlCache
from linkwatch.scanning.domain.domain_lists import DomainListChecker, DomainListRepository, InMemoryDomainListRepository
from linkwatch.scanning.domain.enforcement import EnforcementDispatcher
from linkwatch.scanning.domain.gateway import ChatGateway, LoggingGateway
from linkwatch.scanning.domain.heuristics import HeuristicPolicy, HeuristicScorer, load_policy
from linkwatch.scanning.domain.pipeline import LinkScanPipeline
from linkwatch.scanning.domain.rate_limiter import SlidingWindowRateLimiter
from linkwatch.scanning.domain.redirects import RedirectResolver
from linkwatch.scanning.domain.review import InMemoryReviewRepository, ReviewQueue, ReviewRepository
from linkwatch.scanning.domain.tenants import InMemoryTenantRepository, TenantRepository, TenantSettingsService
from linkwatch.scanning.domain.threat_intel import DomainAgeClient, SafeBrowsingClient, WhoisLookup
from linkwatch.scanning.domain.tiers import TierDecisionEngine
from linkwatch.scanning.domain.verdicts import HeuristicThresholds, VerdictAggregator
from linkwatch.settings import Settings, settings

logger = logging.getLogger(__name__)

DEFAULT_POLICY_PATH = Path(__file__).resolve().parents[3] / "config" / "linkwatch.yml"
# Upper bound for a whole redirect chain, on top of the per-hop timeout.
MAX_REDIRECT_BUDGET_SECONDS = 30.0


@dataclass
class ScannerState:
    """Everything one scanner process owns; built at startup and closed on shutdown."""

    http: httpx.AsyncClient
    cache: TtlCache
    limiter: SlidingWindowRateLimiter
    domain_lists: DomainListChecker
    reviews: ReviewQueue
    audit: AuditRepository
    tenants: TenantSettingsService
    gateway: ChatGateway
    aggregator: VerdictAggregator
    engine: TierDecisionEngine
    dispatcher: EnforcementDispatcher
    pipeline: LinkScanPipeline
    owns_http: bool = True

    async def aclose(self) -> None:
        if self.owns_http:
            await self.http.aclose()


def build_state(
    *,
    config: Settings = settings,
    http: Optional[httpx.AsyncClient] = None,
    cache: Optional[TtlCache] = None,
    gateway: Optional[ChatGateway] = None,
    list_repository: Optional[DomainListRepository] = None,
    review_repository: Optional[ReviewRepository] = None,
    audit_repository: Optional[AuditRepository] = None,
    tenant_repository: Optional[TenantRepository] = None,
    policy: Optional[HeuristicPolicy] = None,
    whois_lookup: Optional[WhoisLookup] = None,
    clock: Optional[Callable[[], float]] = None,
) -> ScannerState:
    owns_http = http is None
    http_client = http or httpx.AsyncClient()
    ttl_cache = cache or InMemoryTtlCache()
    chat_gateway = gateway or LoggingGateway()
    audit = audit_repository or InMemoryAuditRepository()

    limiter_kwargs = {"clock": clock} if clock is not None else {}
    limiter = SlidingWindowRateLimiter(
        max_links=config.rate_limit_max_links,
        window_seconds=config.rate_limit_window_ms / 1000,
        stale_windows=config.rate_limit_stale_windows,
        **limiter_kwargs,
    )
    domain_lists = DomainListChecker(list_repository or InMemoryDomainListRepository())
    reviews = ReviewQueue(review_repository or InMemoryReviewRepository(), chat_gateway)
    tenants = TenantSettingsService(tenant_repository or InMemoryTenantRepository())

    hop_timeout = config.redirect_timeout_ms / 1000
    redirects = RedirectResolver(
        http=http_client,
        max_hops=config.redirect_max_hops,
        timeout_seconds=hop_timeout,
        enabled=config.enable_redirect_resolution,
    )
    reputation = SafeBrowsingClient(
        http=http_client,
        cache=ttl_cache,
        api_key=config.safe_browsing_api_key,
        enabled=config.enable_safe_browsing,
        timeout_seconds=config.safe_browsing_timeout_ms / 1000,
        cache_ttl_seconds=config.safe_browsing_cache_ttl_seconds,
        error_cache_ttl_seconds=config.safe_browsing_error_cache_ttl_seconds,
        client_id=config.service_name,
    )
    age_kwargs = {"lookup_fn": whois_lookup} if whois_lookup is not None else {}
    whois_timeout = config.whois_timeout_ms / 1000
    domain_age = DomainAgeClient(
        cache=ttl_cache,
        enabled=config.enable_whois_lookup,
        timeout_seconds=whois_timeout,
        cache_ttl_seconds=config.whois_cache_ttl_hours * 3600,
        **age_kwargs,
    )
    if policy is None:
        policy = load_policy(config.policy_path or DEFAULT_POLICY_PATH)
    aggregator = VerdictAggregator(
        lists=domain_lists,
        redirects=redirects,
        scorer=HeuristicScorer(policy),
        reputation=reputation,
        domain_age=domain_age,
        thresholds=HeuristicThresholds(
            warn=config.heuristic_warn_threshold,
            quarantine=config.heuristic_quarantine_threshold,
            delete=config.heuristic_delete_threshold,
        ),
        domain_age_threshold_days=config.domain_age_threshold_days,
        reputation_fail_open=config.reputation_fail_open,
        heuristics_enabled=config.enable_heuristic_scanning,
        redirect_timeout_seconds=min(hop_timeout * max(1, config.redirect_max_hops), MAX_REDIRECT_BUDGET_SECONDS),
        reputation_timeout_seconds=config.safe_browsing_timeout_ms / 1000 + 1,
        age_timeout_seconds=whois_timeout + 1,
    )
    engine = TierDecisionEngine()
    dispatcher = EnforcementDispatcher(chat_gateway, reviews, warn_message_ttl_ms=config.warn_message_ttl_ms)
    pipeline = LinkScanPipeline(
        aggregator=aggregator,
        engine=engine,
        dispatcher=dispatcher,
        limiter=limiter,
        audit=audit,
        tenants=tenants,
    )
    return ScannerState(
        http=http_client,
        cache=ttl_cache,
        limiter=limiter,
        domain_lists=domain_lists,
        reviews=reviews,
        audit=audit,
        tenants=tenants,
        gateway=chat_gateway,
        aggregator=aggregator,
        engine=engine,
        dispatcher=dispatcher,
        pipeline=pipeline,
        owns_http=owns_http,
    )


_state: Optional[ScannerState] = None


def configure(**overrides) -> ScannerState:
    """Install an in-memory state; keyword overrides are passed to ``build_state``."""

    global _state
    _state = build_state(**overrides)
    return _state


def configure_postgres(
    pool: asyncpg.Pool,
    *,
    redis: Optional[RedisProxy] = None,
    config: Settings = settings,
    **overrides,
) -> ScannerState:
    """Install a state backed by asyncpg repositories, the Redis cache and the actions stream."""

    from linkwatch.scanning.infra.postgres_repo import (
        PostgresAuditRepository,
        PostgresDomainListRepository,
        PostgresReviewRepository,
        PostgresTenantRepository,
    )
    from linkwatch.scanning.infra.redis_streams import RedisStreamGateway

    global _state
    redis_proxy = redis or redis_client
    _state = build_state(
        config=config,
        cache=RedisTtlCache(redis_proxy),
        gateway=overrides.pop("gateway", None) or RedisStreamGateway(redis_proxy, stream=config.actions_stream),
        list_repository=PostgresDomainListRepository(pool),
        review_repository=PostgresReviewRepository(pool),
        audit_repository=PostgresAuditRepository(pool),
        tenant_repository=PostgresTenantRepository(pool),
        **overrides,
    )
    logger.info("scanner state configured with postgres storage")
    return _state


def set_state(state: Optional[ScannerState]) -> None:
    global _state
    _state = state


def get_state() -> ScannerState:
    if _state is None:
        return configure()
    return _state


async def shutdown() -> None:
    global _state
    if _state is not None:
        await _state.aclose()
        _state = None

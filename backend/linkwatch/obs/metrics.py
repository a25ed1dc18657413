"""Central registry for Prometheus metrics used by the link scanner."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram


REQUEST_COUNTER = Counter(
	"linkwatch_http_requests_total",
	"Total admin API requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"linkwatch_http_request_duration_seconds",
	"Admin API request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

SCAN_JOBS_TOTAL = Counter(
	"linkwatch_scan_jobs_total",
	"Link scanning jobs processed",
	["source", "status"],
)

SCAN_FAILURES_TOTAL = Counter(
	"linkwatch_scan_failures_total",
	"Link scanning failures by reason",
	["source", "reason"],
)

SCAN_LATENCY_SECONDS = Histogram(
	"linkwatch_scan_latency_seconds",
	"Per-URL scan latency in seconds",
	["stage"],
	buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0),
)

REDIRECT_HOPS = Histogram(
	"linkwatch_redirect_hops",
	"Redirect hops followed per resolved URL",
	buckets=(0, 1, 2, 3, 5, 8, 10),
)

TIER_DECISIONS_TOTAL = Counter(
	"linkwatch_tier_decisions_total",
	"Tier decisions by tier label",
	["tier"],
)

SIGNALS_TOTAL = Counter(
	"linkwatch_signals_total",
	"Signals raised on scanned URLs",
	["signal"],
)

ENFORCEMENT_OUTCOMES_TOTAL = Counter(
	"linkwatch_enforcement_outcomes_total",
	"Enforcement outcomes by result tag",
	["outcome"],
)

UPSTREAM_FAILURES_TOTAL = Counter(
	"linkwatch_upstream_failures_total",
	"Failed calls to upstream collaborators, degraded to fallbacks",
	["source", "reason"],
)

CACHE_LOOKUPS_TOTAL = Counter(
	"linkwatch_cache_lookups_total",
	"TTL cache lookups by namespace and result",
	["namespace", "result"],
)

RATE_LIMIT_HITS_TOTAL = Counter(
	"linkwatch_rate_limit_hits_total",
	"Messages that exceeded the per-user link rate limit",
)

RATE_WINDOWS_GAUGE = Gauge(
	"linkwatch_rate_windows",
	"Tracked per-user rate windows",
)

REVIEW_BACKLOG_GAUGE = Gauge(
	"linkwatch_review_backlog",
	"Pending review queue entries",
)

STORAGE_FAILURES_TOTAL = Counter(
	"linkwatch_storage_failures_total",
	"Storage writes that failed after enforcement",
	["operation"],
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route, method, str(status)).inc()
	REQUEST_LATENCY.labels(route, method).observe(elapsed_seconds)


def mark_upstream_failure(source: str, exc: BaseException | str) -> None:
	reason = exc if isinstance(exc, str) else exc.__class__.__name__
	UPSTREAM_FAILURES_TOTAL.labels(source, reason).inc()


def mark_cache(namespace: str, hit: bool) -> None:
	CACHE_LOOKUPS_TOTAL.labels(namespace, "hit" if hit else "miss").inc()

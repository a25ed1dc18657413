"""Threat intelligence: Safe Browsing reputation and WHOIS domain age, both cached."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Iterable, Mapping

import httpx
import whois

from linkwatch.obs import metrics as obs_metrics
from linkwatch.scanning.domain.caching import TtlCache
from linkwatch.scanning.domain.url_parsing import is_ip_address

logger = logging.getLogger(__name__)

SAFE_BROWSING_ENDPOINT = "https://safebrowsing.googleapis.com/v4/threatMatches:find"
THREAT_TYPES = ("MALWARE", "SOCIAL_ENGINEERING", "UNWANTED_SOFTWARE", "POTENTIALLY_HARMFUL_APPLICATION")

CREATION_FIELDS = (
    "creation_date",
    "creationDate",
    "created",
    "registration_date",
    "registrationDate",
    "registered",
    "domain_registration_date",
    "domainRegistrationDate",
    "created_date",
)
_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%d-%b-%Y",
    "%d-%b-%Y %H:%M:%S",
    "%Y.%m.%d",
    "%d.%m.%Y",
    "%Y/%m/%d",
    "%Y%m%d",
)
_MIN_CREATION_YEAR = 1991
NOT_FOUND_TTL_SECONDS = 3600
LOOKUP_ERROR_TTL_SECONDS = 1800


async def _cache_get(cache: TtlCache, namespace: str, key: str) -> Any | None:
    try:
        value = await cache.get(key)
    except Exception as exc:  # noqa: BLE001
        obs_metrics.mark_upstream_failure(f"{namespace}_cache", exc)
        logger.warning("cache read failed", extra={"cache_key": key, "error": str(exc)})
        return None
    obs_metrics.mark_cache(namespace, value is not None)
    return value


async def _cache_set(cache: TtlCache, namespace: str, key: str, value: Any, ttl: int) -> None:
    try:
        await cache.set(key, value, ttl=ttl)
    except Exception as exc:  # noqa: BLE001
        obs_metrics.mark_upstream_failure(f"{namespace}_cache", exc)
        logger.warning("cache write failed", extra={"cache_key": key, "error": str(exc)})


# --- Reputation -------------------------------------------------------


@dataclass(frozen=True)
class ReputationResult:
    is_threat: bool
    threat_types: tuple[str, ...] = ()
    error: str | None = None
    cached: bool = False

    def to_cache(self) -> dict[str, Any]:
        return {"is_threat": self.is_threat, "threat_types": list(self.threat_types), "error": self.error}

    @staticmethod
    def from_cache(data: Mapping[str, Any]) -> "ReputationResult":
        return ReputationResult(
            is_threat=bool(data.get("is_threat")),
            threat_types=tuple(str(item) for item in data.get("threat_types") or ()),
            error=data.get("error"),
            cached=True,
        )


def build_lookup_payload(url: str, *, client_id: str, client_version: str) -> dict[str, Any]:
    return {
        "client": {"clientId": client_id, "clientVersion": client_version},
        "threatInfo": {
            "threatTypes": list(THREAT_TYPES),
            "platformTypes": ["ANY_PLATFORM"],
            "threatEntryTypes": ["URL"],
            "threatEntries": [{"url": url}],
        },
    }


def parse_matches(body: Any) -> tuple[str, ...]:
    """Extract unique threat types from a ``threatMatches:find`` response body."""

    if not isinstance(body, Mapping):
        raise ValueError("response body is not an object")
    matches = body.get("matches") or []
    if not isinstance(matches, list):
        raise ValueError("matches is not a list")
    types: list[str] = []
    for match in matches:
        if not isinstance(match, Mapping):
            continue
        threat_type = match.get("threatType")
        if threat_type and threat_type not in types:
            types.append(str(threat_type))
    return tuple(types)


@dataclass
class SafeBrowsingClient:
    """Google Safe Browsing v4 lookups; disabled without an API key and fail-open on errors."""

    http: httpx.AsyncClient
    cache: TtlCache
    api_key: str | None = None
    enabled: bool = True
    timeout_seconds: float = 5.0
    cache_ttl_seconds: int = 3600
    error_cache_ttl_seconds: int = 60
    client_id: str = "linkwatch"
    client_version: str = "0.1.0"
    endpoint: str = SAFE_BROWSING_ENDPOINT

    @property
    def active(self) -> bool:
        return self.enabled and bool(self.api_key)

    async def check_url(self, url: str) -> ReputationResult:
        if not self.active:
            return ReputationResult(is_threat=False)
        key = f"safebrowsing:{url}"
        cached = await _cache_get(self.cache, "safebrowsing", key)
        if isinstance(cached, Mapping):
            return ReputationResult.from_cache(cached)

        result = await self._lookup(url)
        ttl = self.error_cache_ttl_seconds if result.error else self.cache_ttl_seconds
        await _cache_set(self.cache, "safebrowsing", key, result.to_cache(), ttl)
        return result

    async def _lookup(self, url: str) -> ReputationResult:
        payload = build_lookup_payload(url, client_id=self.client_id, client_version=self.client_version)
        try:
            response = await self.http.post(
                self.endpoint,
                params={"key": self.api_key},
                json=payload,
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
            threat_types = parse_matches(response.json())
        except (httpx.HTTPError, ValueError) as exc:
            obs_metrics.mark_upstream_failure("safebrowsing", exc)
            logger.warning("safe browsing lookup failed", extra={"url": url, "error": exc.__class__.__name__})
            return ReputationResult(is_threat=False, error=exc.__class__.__name__)
        if threat_types:
            logger.info("safe browsing match", extra={"url": url, "threat_types": list(threat_types)})
        return ReputationResult(is_threat=bool(threat_types), threat_types=threat_types)


# --- Domain age -------------------------------------------------------


def _coerce_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        parsed = _parse_date_string(value)
    else:
        return None
    if parsed is None or parsed.year < _MIN_CREATION_YEAR:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_date_string(raw: str) -> datetime | None:
    text = raw.strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        pass
    candidate = text.split(" (", 1)[0].strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(candidate, fmt)
        except ValueError:
            continue
    return None


def _record_value(record: Any, name: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


def extract_creation_date(record: Any) -> datetime | None:
    """Find the first valid creation date across the known WHOIS field spellings."""

    if record is None:
        return None
    for name in CREATION_FIELDS:
        value = _record_value(record, name)
        if not value:
            continue
        candidates: Iterable[Any] = value if isinstance(value, (list, tuple)) else (value,)
        for candidate in candidates:
            parsed = _coerce_datetime(candidate)
            if parsed is not None:
                return parsed
    return None


def age_in_days(created: datetime, now: datetime | None = None) -> int:
    now = now or datetime.now(timezone.utc)
    return max(0, (now - created).days)


@dataclass(frozen=True)
class DomainAgeResult:
    domain: str
    age_days: int | None
    created_at: datetime | None = None
    source: str = "lookup"
    error: str | None = None


WhoisLookup = Callable[[str], Any]


@dataclass
class DomainAgeClient:
    """Registration-age lookups through python-whois, run off the event loop."""

    cache: TtlCache
    enabled: bool = True
    timeout_seconds: float = 5.0
    cache_ttl_seconds: int = 24 * 3600
    lookup_fn: WhoisLookup = field(default=whois.whois)
    now: Callable[[], datetime] = field(default=lambda: datetime.now(timezone.utc))

    async def age_days(self, domain: str) -> int | None:
        result = await self.lookup(domain)
        return result.age_days

    async def lookup(self, domain: str) -> DomainAgeResult:
        domain = domain.strip().lower()
        if not self.enabled:
            return DomainAgeResult(domain=domain, age_days=None, source="disabled")
        if not domain or is_ip_address(domain) or "." not in domain:
            return DomainAgeResult(domain=domain, age_days=None, source="skipped")

        key = f"whois:{domain}"
        cached = await _cache_get(self.cache, "whois", key)
        if isinstance(cached, Mapping):
            created = _coerce_datetime(cached.get("created_at")) if cached.get("created_at") else None
            return DomainAgeResult(
                domain=domain,
                age_days=age_in_days(created, self.now()) if created else None,
                created_at=created,
                source="cache",
                error=cached.get("error"),
            )

        try:
            record = await asyncio.wait_for(asyncio.to_thread(self.lookup_fn, domain), timeout=self.timeout_seconds)
        except Exception as exc:  # noqa: BLE001
            obs_metrics.mark_upstream_failure("whois", exc)
            logger.debug("whois lookup failed", extra={"domain": domain, "error": str(exc)})
            await _cache_set(self.cache, "whois", key, {"created_at": None, "error": str(exc) or exc.__class__.__name__}, LOOKUP_ERROR_TTL_SECONDS)
            return DomainAgeResult(domain=domain, age_days=None, source="error", error=exc.__class__.__name__)

        created = extract_creation_date(record)
        if created is None:
            await _cache_set(self.cache, "whois", key, {"created_at": None, "error": "creation date not found"}, NOT_FOUND_TTL_SECONDS)
            return DomainAgeResult(domain=domain, age_days=None, error="creation date not found")
        await _cache_set(self.cache, "whois", key, {"created_at": created.isoformat(), "error": None}, self.cache_ttl_seconds)
        return DomainAgeResult(domain=domain, age_days=age_in_days(created, self.now()), created_at=created)

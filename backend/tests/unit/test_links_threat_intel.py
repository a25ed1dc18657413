import json
from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace

import httpx
import pytest

from linkwatch.scanning.domain.caching import InMemoryTtlCache
from linkwatch.scanning.domain.threat_intel import (
    LOOKUP_ERROR_TTL_SECONDS,
    DomainAgeClient,
    SafeBrowsingClient,
    extract_creation_date,
    parse_matches,
)

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


class RecordingCache(InMemoryTtlCache):
    def __init__(self) -> None:
        super().__init__()
        self.ttls: dict[str, int] = {}

    async def set(self, key, value, *, ttl):
        self.ttls[key] = ttl
        await super().set(key, value, ttl=ttl)


def _safe_browsing(handler, cache=None, **kwargs) -> SafeBrowsingClient:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SafeBrowsingClient(http=client, cache=cache or RecordingCache(), api_key="sb-key", **kwargs)


@pytest.mark.asyncio
async def test_safe_browsing_inactive_without_key() -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={})

    client = _safe_browsing(handler)
    client.api_key = None
    result = await client.check_url("https://example.com/")
    await client.http.aclose()

    assert not result.is_threat
    assert calls == []


@pytest.mark.asyncio
async def test_safe_browsing_match_is_cached() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(
            200,
            json={"matches": [{"threatType": "SOCIAL_ENGINEERING"}, {"threatType": "MALWARE"}, {"threatType": "MALWARE"}]},
        )

    cache = RecordingCache()
    client = _safe_browsing(handler, cache=cache)
    first = await client.check_url("https://phish.example.com/")
    second = await client.check_url("https://phish.example.com/")
    await client.http.aclose()

    assert first.is_threat
    assert first.threat_types == ("SOCIAL_ENGINEERING", "MALWARE")
    assert not first.cached
    assert second.cached
    assert second.threat_types == first.threat_types
    assert len(requests) == 1
    assert requests[0].url.params["key"] == "sb-key"
    body = json.loads(requests[0].content)
    assert body["threatInfo"]["threatEntries"] == [{"url": "https://phish.example.com/"}]
    assert cache.ttls["safebrowsing:https://phish.example.com/"] == 3600


@pytest.mark.asyncio
async def test_safe_browsing_fails_open_with_short_error_ttl() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    cache = RecordingCache()
    client = _safe_browsing(handler, cache=cache)
    result = await client.check_url("https://example.com/")
    await client.http.aclose()

    assert not result.is_threat
    assert result.error == "HTTPStatusError"
    assert cache.ttls["safebrowsing:https://example.com/"] == 60


def test_parse_matches_rejects_malformed_bodies() -> None:
    assert parse_matches({}) == ()
    with pytest.raises(ValueError):
        parse_matches(["not", "an", "object"])
    with pytest.raises(ValueError):
        parse_matches({"matches": "nope"})


def test_extract_creation_date_handles_common_shapes() -> None:
    created = datetime(2020, 1, 2, 3, 4, 5)
    assert extract_creation_date({"creation_date": [created, datetime(2021, 1, 1)]}) == created.replace(tzinfo=timezone.utc)
    assert extract_creation_date(SimpleNamespace(creation_date=None, created="2019-05-06")) == datetime(2019, 5, 6, tzinfo=timezone.utc)
    assert extract_creation_date({"registered": date(2018, 7, 8)}) == datetime(2018, 7, 8, tzinfo=timezone.utc)
    assert extract_creation_date({"creationDate": "06-Mar-2015"}) == datetime(2015, 3, 6, tzinfo=timezone.utc)
    assert extract_creation_date({"creation_date": "1985-01-01"}) is None
    assert extract_creation_date({"status": "active"}) is None
    assert extract_creation_date(None) is None


@pytest.mark.asyncio
async def test_domain_age_lookup_and_cache() -> None:
    lookups: list[str] = []

    def lookup(domain: str):
        lookups.append(domain)
        return {"creation_date": NOW - timedelta(days=12)}

    cache = RecordingCache()
    client = DomainAgeClient(cache=cache, lookup_fn=lookup, now=lambda: NOW)

    assert await client.age_days("Fresh.Example.com") == 12
    cached = await client.lookup("fresh.example.com")
    assert cached.age_days == 12
    assert cached.source == "cache"
    assert lookups == ["fresh.example.com"]
    assert cache.ttls["whois:fresh.example.com"] == 24 * 3600


@pytest.mark.asyncio
async def test_domain_age_errors_are_unknown_and_cached_briefly() -> None:
    def lookup(domain: str):
        raise ConnectionResetError("whois server hung up")

    cache = RecordingCache()
    client = DomainAgeClient(cache=cache, lookup_fn=lookup, now=lambda: NOW)

    result = await client.lookup("broken.example.com")

    assert result.age_days is None
    assert result.error == "ConnectionResetError"
    assert cache.ttls["whois:broken.example.com"] == LOOKUP_ERROR_TTL_SECONDS
    again = await client.lookup("broken.example.com")
    assert again.source == "cache"
    assert again.age_days is None


@pytest.mark.asyncio
async def test_domain_age_skips_ips_and_disabled_lookups() -> None:
    def lookup(domain: str):
        raise AssertionError("lookup should not run")

    client = DomainAgeClient(cache=RecordingCache(), lookup_fn=lookup, now=lambda: NOW)
    assert (await client.lookup("10.0.0.1")).source == "skipped"
    assert (await client.lookup("localhost")).source == "skipped"

    client.enabled = False
    assert (await client.lookup("example.com")).source == "disabled"

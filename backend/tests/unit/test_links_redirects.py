import asyncio

import httpx
import pytest

from linkwatch.scanning.domain.redirects import RedirectResolver


def _resolver(handler, **kwargs) -> RedirectResolver:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RedirectResolver(http=client, **kwargs)


@pytest.mark.asyncio
async def test_follows_absolute_and_relative_locations() -> None:
    routes = {
        ("short.example.com", "/abc123"): httpx.Response(301, headers={"Location": "https://landing.example.net/next"}),
        ("landing.example.net", "/next"): httpx.Response(302, headers={"Location": "/final"}),
    }
    seen_methods: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen_methods.append(request.method)
        return routes.get((request.url.host, request.url.path), httpx.Response(200))

    resolver = _resolver(handler)
    result = await resolver.resolve("https://short.example.com/abc123")
    await resolver.http.aclose()

    assert result.final_url == "https://landing.example.net/final"
    assert result.final_domain == "landing.example.net"
    assert result.hop_count == 2
    assert result.chain == (
        "https://short.example.com/abc123",
        "https://landing.example.net/next",
        "https://landing.example.net/final",
    )
    assert not result.max_hops_reached
    assert set(seen_methods) == {"HEAD"}


@pytest.mark.asyncio
async def test_stops_at_hop_cap() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        step = int(request.url.path.strip("/") or 0)
        return httpx.Response(302, headers={"Location": f"/{step + 1}"})

    resolver = _resolver(handler, max_hops=3)
    result = await resolver.resolve("https://hops.example.com/0")
    await resolver.http.aclose()

    assert result.hop_count == 3
    assert result.max_hops_reached
    assert result.final_url == "https://hops.example.com/3"
    assert len(result.chain) == 4


@pytest.mark.asyncio
async def test_self_redirect_is_a_loop() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(301, headers={"Location": str(request.url)})

    resolver = _resolver(handler)
    result = await resolver.resolve("https://loop.example.com/")
    await resolver.http.aclose()

    assert result.loop_detected
    assert result.hop_count == 0
    assert result.final_url == "https://loop.example.com/"


@pytest.mark.asyncio
async def test_transport_error_keeps_last_known_url() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "down.example.org":
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(301, headers={"Location": "https://down.example.org/"})

    resolver = _resolver(handler)
    result = await resolver.resolve("https://up.example.com/")
    await resolver.http.aclose()

    assert result.error == "ConnectError"
    assert result.final_url == "https://down.example.org/"
    assert result.hop_count == 1


@pytest.mark.asyncio
async def test_non_http_location_ends_chain() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(302, headers={"Location": "ftp://files.example.com/payload"})

    resolver = _resolver(handler)
    result = await resolver.resolve("https://example.com/dl")
    await resolver.http.aclose()

    assert result.final_url == "https://example.com/dl"
    assert result.hop_count == 0
    assert result.error is None


@pytest.mark.asyncio
async def test_disabled_resolver_makes_no_requests() -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200)

    resolver = _resolver(handler, enabled=False)
    result = await resolver.resolve("https://example.com/")
    await resolver.http.aclose()

    assert calls == []
    assert result.final_domain == "example.com"
    assert result.chain == ("https://example.com/",)


@pytest.mark.asyncio
async def test_chain_budget_keeps_resolved_hops() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "short.example.com":
            return httpx.Response(301, headers={"Location": "https://cloaked.example.net/landing"})
        await asyncio.sleep(1.0)
        return httpx.Response(200)

    resolver = _resolver(handler, timeout_seconds=5.0)
    result = await resolver.resolve("https://short.example.com/x", budget_seconds=0.2)
    await resolver.http.aclose()

    assert result.final_url == "https://cloaked.example.net/landing"
    assert result.final_domain == "cloaked.example.net"
    assert result.hop_count == 1
    assert result.error == "TimeoutError"


@pytest.mark.asyncio
async def test_spent_budget_stops_before_next_hop() -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(302, headers={"Location": "/next"})

    resolver = _resolver(handler)
    result = await resolver.resolve("https://hops.example.com/", budget_seconds=0)
    await resolver.http.aclose()

    assert calls == []
    assert result.error == "budget_exhausted"
    assert result.final_url == "https://hops.example.com/"

"""Redirect chain resolution using HEAD requests."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from urllib.parse import urljoin

import httpx

from linkwatch.obs import metrics as obs_metrics
from linkwatch.scanning.domain.url_parsing import domain_of, parse_url

logger = logging.getLogger(__name__)

_HTTP_SCHEMES = {"http", "https"}


@dataclass(frozen=True)
class RedirectResult:
    original_url: str
    final_url: str
    final_domain: str
    hop_count: int
    chain: tuple[str, ...]
    max_hops_reached: bool = False
    loop_detected: bool = False
    error: str | None = None

    @staticmethod
    def unresolved(url: str, *, error: str | None = None) -> "RedirectResult":
        return RedirectResult(
            original_url=url,
            final_url=url,
            final_domain=domain_of(url),
            hop_count=0,
            chain=(url,),
            error=error,
        )


@dataclass
class RedirectResolver:
    """Follows 3xx ``Location`` headers up to ``max_hops``; never raises."""

    http: httpx.AsyncClient
    max_hops: int = 10
    timeout_seconds: float = 5.0
    enabled: bool = True
    user_agent: str = field(default="Mozilla/5.0 (compatible; LinkwatchScanner/1.0)")

    async def resolve(self, url: str, *, budget_seconds: float | None = None) -> RedirectResult:
        """Resolve ``url``; a spent ``budget_seconds`` ends the chain at the last resolved hop."""

        if not self.enabled:
            return RedirectResult.unresolved(url)
        parsed = parse_url(url)
        if parsed is None or parsed.scheme not in _HTTP_SCHEMES:
            return RedirectResult.unresolved(url)

        chain = [url]
        visited = {url}
        current = url
        hops = 0
        loop_detected = False
        error: str | None = None
        loop = asyncio.get_running_loop()
        deadline = loop.time() + budget_seconds if budget_seconds is not None else None
        while hops < self.max_hops:
            hop_timeout = self.timeout_seconds
            if deadline is not None:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    error = "budget_exhausted"
                    break
                hop_timeout = min(hop_timeout, remaining)
            try:
                response = await asyncio.wait_for(
                    self.http.head(
                        current,
                        follow_redirects=False,
                        timeout=self.timeout_seconds,
                        headers={"User-Agent": self.user_agent},
                    ),
                    timeout=hop_timeout,
                )
            except (httpx.HTTPError, asyncio.TimeoutError) as exc:
                error = exc.__class__.__name__
                obs_metrics.mark_upstream_failure("redirects", exc)
                logger.debug("redirect hop failed", extra={"url": current, "error": error})
                break
            location = response.headers.get("location")
            if not (300 <= response.status_code < 400 and location):
                break
            target = urljoin(current, location.strip())
            target_parsed = parse_url(target)
            if target_parsed is None or target_parsed.scheme not in _HTTP_SCHEMES:
                break
            if target in visited:
                loop_detected = True
                break
            visited.add(target)
            chain.append(target)
            current = target
            hops += 1

        max_hops_reached = hops >= self.max_hops
        obs_metrics.REDIRECT_HOPS.observe(hops)
        return RedirectResult(
            original_url=url,
            final_url=current,
            final_domain=domain_of(current),
            hop_count=hops,
            chain=tuple(chain),
            max_hops_reached=max_hops_reached,
            loop_detected=loop_detected,
            error=error,
        )

"""URL extraction and normalisation shared by every scanning stage."""

from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit

_URL_RE = re.compile(r"https?://[^\s<>]+", re.IGNORECASE)
_TRAILING_PUNCTUATION = ".,;:!?'\")]}>"


@dataclass(frozen=True)
class ParsedLocation:
    """Normalised view of a URL; hostname is lower-cased, www-stripped and IDNA-decoded."""

    scheme: str
    hostname: str
    path: str
    port: Optional[int]
    query: str


def _decode_label(label: str) -> str:
    if not label.startswith("xn--"):
        return label
    try:
        return label.encode("ascii").decode("idna")
    except UnicodeError:
        return label


def normalize_host(host: str) -> str:
    host = host.strip().lower().rstrip(".")
    if host.startswith("www."):
        host = host[4:]
    return ".".join(_decode_label(label) for label in host.split("."))


def normalize_domain(value: str) -> str:
    """Reduce user input (bare domain or full URL) to the form stored in allow/deny lists."""

    text = value.strip().lower()
    text = re.sub(r"^[a-z][a-z0-9+.-]*://", "", text)
    text = re.split(r"[/?#]", text, maxsplit=1)[0]
    if "@" in text:
        text = text.rsplit("@", 1)[1]
    if text.startswith("[") and "]" in text:
        text = text[1 : text.index("]")]
    elif text.count(":") == 1:
        text = text.split(":", 1)[0]
    return normalize_host(text)


def parse_url(url: str) -> Optional[ParsedLocation]:
    """Parse ``url`` or return ``None`` when it has no scheme, no host or a bad port."""

    try:
        parts = urlsplit(url.strip())
        port = parts.port
    except ValueError:
        return None
    if not parts.scheme or not parts.hostname:
        return None
    return ParsedLocation(
        scheme=parts.scheme.lower(),
        hostname=normalize_host(parts.hostname),
        path=parts.path or "/",
        port=port,
        query=parts.query,
    )


def domain_of(url: str) -> str:
    parsed = parse_url(url)
    if parsed is None:
        return url.strip().lower()
    return parsed.hostname


def extract_urls(content: str) -> list[str]:
    """Return the unique http(s) URLs in ``content`` in order of first appearance."""

    seen: set[str] = set()
    urls: list[str] = []
    for match in _URL_RE.finditer(content or ""):
        candidate = match.group(0).rstrip(_TRAILING_PUNCTUATION)
        if not candidate or candidate in seen:
            continue
        seen.add(candidate)
        urls.append(candidate)
    return urls


def is_ip_address(hostname: str) -> bool:
    try:
        ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return True

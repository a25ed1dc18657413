"""Pattern-based URL risk scoring and its YAML-backed policy tables."""

from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

import yaml

from linkwatch.scanning.domain.signals import Signal, canonical
from linkwatch.scanning.domain.url_parsing import ParsedLocation, is_ip_address, parse_url

logger = logging.getLogger(__name__)

DEFAULT_WEIGHTS: Mapping[Signal, int] = MappingProxyType(
    {
        Signal.IP_ADDRESS: 20,
        Signal.MANY_SUBDOMAINS: 15,
        Signal.LONG_URL: 15,
        Signal.UNUSUAL_TLD: 10,
        Signal.TYPOSQUAT: 35,
        Signal.SUSPICIOUS_PATH: 15,
        Signal.OBFUSCATED_PATH: 15,
        Signal.MULTIPLE_AT: 25,
        Signal.HOMOGRAPH: 30,
        Signal.UNUSUAL_PORT: 10,
        Signal.POTENTIAL_SHORTENER: 5,
    }
)

DEFAULT_BRANDS: tuple[str, ...] = (
    "google", "facebook", "twitter", "instagram", "discord", "youtube",
    "netflix", "amazon", "apple", "microsoft", "paypal", "ebay",
    "steam", "roblox", "twitch", "github", "reddit", "snapchat",
    "linkedin", "dropbox", "spotify", "tiktok", "zoom", "slack",
)

DEFAULT_KEYWORDS: tuple[str, ...] = (
    "login", "signin", "sign-in", "verify", "confirm", "update",
    "secure", "account", "bank", "wallet", "password", "suspended",
    "locked", "authenticate", "validation", "security", "billing",
)

DEFAULT_COMMON_TLDS: frozenset[str] = frozenset(
    {
        "com", "org", "net", "edu", "gov", "mil", "io", "co", "dev",
        "app", "ai", "ca", "uk", "de", "fr", "au", "br", "in", "ru",
        "jp", "kr", "cn", "us", "mx", "es", "it", "nl", "se", "no",
    }
)

_LEET_TABLE = str.maketrans({"0": "o", "1": "i", "3": "e", "4": "a", "5": "s", "7": "t", "@": "a", "$": "s"})
_OBFUSCATED_RE = re.compile(r"^[a-f0-9]{20,}$", re.IGNORECASE)
_SHORTENER_RE = re.compile(r"^/[a-zA-Z0-9]{6,8}$")
_LOOKALIKE_SCRIPTS = ("CYRILLIC", "GREEK")
_STANDARD_PORTS = {80, 443}


@dataclass(frozen=True)
class HeuristicPolicy:
    """Weights and reference tables for the scorer."""

    weights: Mapping[Signal, int] = field(default_factory=lambda: DEFAULT_WEIGHTS)
    brands: tuple[str, ...] = DEFAULT_BRANDS
    keywords: tuple[str, ...] = DEFAULT_KEYWORDS
    common_tlds: frozenset[str] = DEFAULT_COMMON_TLDS
    max_labels: int = 4
    long_url_length: int = 200
    unparseable_score: int = 25

    @staticmethod
    def default() -> "HeuristicPolicy":
        return HeuristicPolicy()

    @staticmethod
    def from_mapping(config: Mapping[str, Any]) -> "HeuristicPolicy":
        base = HeuristicPolicy.default()
        weights = dict(base.weights)
        for name, value in (config.get("weights") or {}).items():
            try:
                signal = Signal(str(name).upper())
            except ValueError:
                logger.warning("unknown heuristic weight %s ignored", name)
                continue
            if signal in base.weights:
                weights[signal] = int(value)
        brands = config.get("brands")
        keywords = config.get("keywords")
        tlds = config.get("common_tlds")
        return HeuristicPolicy(
            weights=MappingProxyType(weights),
            brands=tuple(str(item).lower() for item in brands) if brands else base.brands,
            keywords=tuple(str(item).lower() for item in keywords) if keywords else base.keywords,
            common_tlds=frozenset(str(item).lower() for item in tlds) if tlds else base.common_tlds,
            max_labels=int(config.get("max_labels", base.max_labels)),
            long_url_length=int(config.get("long_url_length", base.long_url_length)),
            unparseable_score=int(config.get("unparseable_score", base.unparseable_score)),
        )


def load_policy(path: str | Path | None) -> HeuristicPolicy:
    """Load the scoring policy from YAML, falling back to defaults when missing or invalid."""

    if path is None:
        return HeuristicPolicy.default()
    try:
        text = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.warning("heuristic policy file missing at %s; using defaults", path)
        return HeuristicPolicy.default()
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        logger.warning("failed to parse heuristic policy: %s", exc)
        return HeuristicPolicy.default()
    if not isinstance(data, Mapping):
        logger.warning("heuristic policy file invalid; falling back to defaults")
        return HeuristicPolicy.default()
    section = data.get("heuristics", data)
    if not isinstance(section, Mapping):
        return HeuristicPolicy.default()
    return HeuristicPolicy.from_mapping(section)


@dataclass(frozen=True)
class HeuristicResult:
    score: int
    signals: tuple[Signal, ...]
    details: Mapping[str, Any] = field(default_factory=dict)


def levenshtein(a: str, b: str) -> int:
    """Classic edit distance with a rolling row."""

    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def de_leet(text: str) -> str:
    return text.lower().translate(_LEET_TABLE)


class HeuristicScorer:
    """Pure scorer: the same URL and policy always produce the same result."""

    def __init__(self, policy: HeuristicPolicy | None = None) -> None:
        self.policy = policy or HeuristicPolicy.default()

    def score(self, url: str) -> HeuristicResult:
        parsed = parse_url(url)
        if parsed is None:
            return HeuristicResult(
                score=self.policy.unparseable_score,
                signals=(Signal.UNPARSEABLE_URL,),
                details=MappingProxyType({"error": "invalid url"}),
            )

        hits: list[Signal] = []
        details: dict[str, Any] = {}
        hostname = parsed.hostname
        labels = [label for label in hostname.split(".") if label]
        is_ip = is_ip_address(hostname)

        if is_ip:
            hits.append(Signal.IP_ADDRESS)
            details["ip_address"] = hostname
        if not is_ip and len(labels) > self.policy.max_labels:
            hits.append(Signal.MANY_SUBDOMAINS)
            details["label_count"] = len(labels)
        if len(url) > self.policy.long_url_length:
            hits.append(Signal.LONG_URL)
            details["url_length"] = len(url)
        if not is_ip and labels and labels[-1] not in self.policy.common_tlds:
            hits.append(Signal.UNUSUAL_TLD)
            details["tld"] = labels[-1]
        if not is_ip:
            typosquat = self._typosquat(labels[:-1])
            if typosquat:
                hits.append(Signal.TYPOSQUAT)
                details["typosquat"] = typosquat
        keywords = self._keywords(parsed, labels)
        if keywords:
            hits.append(Signal.SUSPICIOUS_PATH)
            details["keywords"] = keywords
        if _OBFUSCATED_RE.match(parsed.path.replace("/", "")):
            hits.append(Signal.OBFUSCATED_PATH)
        at_count = url.count("@")
        if at_count > 1:
            hits.append(Signal.MULTIPLE_AT)
            details["at_count"] = at_count
        if self._homograph(hostname):
            hits.append(Signal.HOMOGRAPH)
        if parsed.port is not None and parsed.port not in _STANDARD_PORTS:
            hits.append(Signal.UNUSUAL_PORT)
            details["port"] = parsed.port
        if _SHORTENER_RE.match(parsed.path):
            hits.append(Signal.POTENTIAL_SHORTENER)

        signals = canonical(hits)
        total = sum(self.policy.weights.get(signal, 0) for signal in signals)
        return HeuristicResult(score=total, signals=signals, details=MappingProxyType(details))

    def _typosquat(self, labels: list[str]) -> dict[str, Any] | None:
        for brand in self.policy.brands:
            for label in labels:
                clean = de_leet(label)
                if clean == brand or len(clean) < 3:
                    continue
                distance = levenshtein(clean, brand)
                if 0 < distance <= 2:
                    return {"brand": brand, "variation": label, "distance": distance}
                if brand in clean:
                    return {"brand": brand, "variation": label, "match": "substring"}
        return None

    def _keywords(self, parsed: ParsedLocation, labels: list[str]) -> list[str]:
        haystack = f"{parsed.path}?{parsed.query}".lower()
        tokens = {token for label in labels for token in label.split("-") if token}
        found = []
        for keyword in self.policy.keywords:
            if keyword in haystack or keyword in tokens:
                found.append(keyword)
        return found

    @staticmethod
    def _homograph(hostname: str) -> bool:
        for char in hostname:
            if ord(char) < 128 or not char.isalpha():
                continue
            name = unicodedata.name(char, "")
            if any(script in name for script in _LOOKALIKE_SCRIPTS):
                return True
        return False

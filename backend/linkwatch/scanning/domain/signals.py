"""Signal and tier vocabulary shared between scanning, decision and enforcement."""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import Iterable


class Signal(str, Enum):
    IP_ADDRESS = "IP_ADDRESS"
    MANY_SUBDOMAINS = "MANY_SUBDOMAINS"
    LONG_URL = "LONG_URL"
    UNUSUAL_TLD = "UNUSUAL_TLD"
    TYPOSQUAT = "TYPOSQUAT"
    SUSPICIOUS_PATH = "SUSPICIOUS_PATH"
    OBFUSCATED_PATH = "OBFUSCATED_PATH"
    MULTIPLE_AT = "MULTIPLE_AT"
    HOMOGRAPH = "HOMOGRAPH"
    UNUSUAL_PORT = "UNUSUAL_PORT"
    POTENTIAL_SHORTENER = "POTENTIAL_SHORTENER"
    UNPARSEABLE_URL = "UNPARSEABLE_URL"
    HEURISTIC_LOW = "HEURISTIC_LOW"
    HEURISTIC_HIGH = "HEURISTIC_HIGH"
    HEURISTIC_CRITICAL = "HEURISTIC_CRITICAL"
    YOUNG_DOMAIN = "YOUNG_DOMAIN"
    YOUNG_DOMAIN_PLUS = "YOUNG_DOMAIN_PLUS"
    MULTIPLE_RISK_FACTORS = "MULTIPLE_RISK_FACTORS"
    SAFE_BROWSING_MATCH = "SAFE_BROWSING_MATCH"
    KNOWN_MALWARE = "KNOWN_MALWARE"
    PHISHING_DETECTED = "PHISHING_DETECTED"
    BLOCKLIST_HIT = "BLOCKLIST_HIT"
    RATE_LIMIT_HIT = "RATE_LIMIT_HIT"
    REPUTATION_UNAVAILABLE = "REPUTATION_UNAVAILABLE"


# Declaration order doubles as the display order of a verdict's signal tuple.
_ORDER = {signal: index for index, signal in enumerate(Signal)}


def canonical(signals: Iterable[Signal]) -> tuple[Signal, ...]:
    """Deduplicate and sort signals into their canonical display order."""

    return tuple(sorted(set(signals), key=_ORDER.__getitem__))


class Tier(IntEnum):
    SAFE = 0
    WARN = 1
    QUARANTINE = 2
    DELETE = 3

    @property
    def label(self) -> str:
        return self.name

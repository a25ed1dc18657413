"""Append-only link log and per-user tier counters."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional, Protocol

from linkwatch.scanning.domain.signals import Tier
from linkwatch.scanning.domain.verdicts import Verdict


@dataclass(frozen=True)
class LinkLogEntry:
    tenant_id: str
    channel_id: str
    message_id: str
    user_id: str
    verdict: Verdict
    tier: Tier
    outcome: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: Optional[int] = None


@dataclass(frozen=True)
class UserLinkStats:
    tenant_id: str
    user_id: str
    total_links: int = 0
    safe_links: int = 0
    warned_links: int = 0
    quarantined_links: int = 0
    deleted_links: int = 0
    last_link_at: Optional[datetime] = None

    def bumped(self, tier: Tier, at: datetime) -> "UserLinkStats":
        counts = {
            Tier.SAFE: "safe_links",
            Tier.WARN: "warned_links",
            Tier.QUARANTINE: "quarantined_links",
            Tier.DELETE: "deleted_links",
        }
        column = counts[tier]
        return replace(
            self,
            total_links=self.total_links + 1,
            last_link_at=at,
            **{column: getattr(self, column) + 1},
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "total_links": self.total_links,
            "safe_links": self.safe_links,
            "warned_links": self.warned_links,
            "quarantined_links": self.quarantined_links,
            "deleted_links": self.deleted_links,
            "last_link_at": self.last_link_at.isoformat() if self.last_link_at else None,
        }


class AuditRepository(Protocol):
    async def record_link(self, entry: LinkLogEntry) -> LinkLogEntry:
        ...

    async def bump_user_stats(self, tenant_id: str, user_id: str, tier: Tier) -> UserLinkStats:
        ...

    async def get_user_stats(self, tenant_id: str, user_id: str) -> UserLinkStats:
        ...

    async def list_link_logs(self, tenant_id: str, *, user_id: str | None = None, limit: int = 50) -> list[LinkLogEntry]:
        ...


@dataclass
class InMemoryAuditRepository(AuditRepository):
    _logs: list[LinkLogEntry] = field(default_factory=list)
    _stats: dict[tuple[str, str], UserLinkStats] = field(default_factory=dict)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def record_link(self, entry: LinkLogEntry) -> LinkLogEntry:
        async with self._lock:
            stored = replace(entry, id=len(self._logs) + 1)
            self._logs.append(stored)
            return stored

    async def bump_user_stats(self, tenant_id: str, user_id: str, tier: Tier) -> UserLinkStats:
        async with self._lock:
            current = self._stats.get((tenant_id, user_id)) or UserLinkStats(tenant_id=tenant_id, user_id=user_id)
            updated = current.bumped(tier, datetime.now(timezone.utc))
            self._stats[(tenant_id, user_id)] = updated
            return updated

    async def get_user_stats(self, tenant_id: str, user_id: str) -> UserLinkStats:
        return self._stats.get((tenant_id, user_id)) or UserLinkStats(tenant_id=tenant_id, user_id=user_id)

    async def list_link_logs(self, tenant_id: str, *, user_id: str | None = None, limit: int = 50) -> list[LinkLogEntry]:
        items = [
            entry
            for entry in reversed(self._logs)
            if entry.tenant_id == tenant_id and (user_id is None or entry.user_id == user_id)
        ]
        return items[:limit]

"""Per-tenant allow and deny lists."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Protocol

from linkwatch.obs import metrics as obs_metrics
from linkwatch.scanning.domain.url_parsing import normalize_domain

logger = logging.getLogger(__name__)

ALLOW = "allow"
BLOCK = "block"
LIST_KINDS = (ALLOW, BLOCK)


@dataclass(frozen=True)
class DomainListEntry:
    tenant_id: str
    domain: str
    kind: str
    added_by: Optional[str]
    reason: Optional[str]
    created_at: datetime


class DomainListRepository(Protocol):
    async def contains(self, tenant_id: str, kind: str, domain: str) -> bool:
        ...

    async def add(self, entry: DomainListEntry) -> bool:
        ...

    async def remove(self, tenant_id: str, kind: str, domain: str) -> bool:
        ...

    async def list_entries(self, tenant_id: str, kind: str) -> list[DomainListEntry]:
        ...


@dataclass
class InMemoryDomainListRepository(DomainListRepository):
    _entries: dict[tuple[str, str, str], DomainListEntry] = field(default_factory=dict)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def contains(self, tenant_id: str, kind: str, domain: str) -> bool:
        return (tenant_id, kind, domain) in self._entries

    async def add(self, entry: DomainListEntry) -> bool:
        key = (entry.tenant_id, entry.kind, entry.domain)
        async with self._lock:
            if key in self._entries:
                return False
            self._entries[key] = entry
            return True

    async def remove(self, tenant_id: str, kind: str, domain: str) -> bool:
        async with self._lock:
            return self._entries.pop((tenant_id, kind, domain), None) is not None

    async def list_entries(self, tenant_id: str, kind: str) -> list[DomainListEntry]:
        entries = [entry for (tenant, entry_kind, _), entry in self._entries.items() if tenant == tenant_id and entry_kind == kind]
        return sorted(entries, key=lambda entry: entry.domain)


class DomainListChecker:
    """Normalises domains and answers list membership; storage errors read as "not listed"."""

    def __init__(self, repository: DomainListRepository) -> None:
        self.repository = repository

    async def is_allowed(self, domain: str, tenant_id: str) -> bool:
        return await self._contains(tenant_id, ALLOW, domain)

    async def is_blocked(self, domain: str, tenant_id: str) -> bool:
        return await self._contains(tenant_id, BLOCK, domain)

    async def _contains(self, tenant_id: str, kind: str, domain: str) -> bool:
        normalized = normalize_domain(domain)
        if not normalized:
            return False
        try:
            return await self.repository.contains(tenant_id, kind, normalized)
        except Exception as exc:  # noqa: BLE001
            obs_metrics.mark_upstream_failure(f"{kind}list", exc)
            logger.warning("domain list lookup failed", extra={"kind": kind, "domain": normalized, "error": str(exc)})
            return False

    async def add_allowed(self, tenant_id: str, domain: str, *, added_by: str | None = None, reason: str | None = None) -> bool:
        return await self._add(tenant_id, ALLOW, domain, added_by, reason)

    async def add_blocked(self, tenant_id: str, domain: str, *, added_by: str | None = None, reason: str | None = None) -> bool:
        return await self._add(tenant_id, BLOCK, domain, added_by, reason)

    async def remove_allowed(self, tenant_id: str, domain: str) -> bool:
        return await self.repository.remove(tenant_id, ALLOW, normalize_domain(domain))

    async def remove_blocked(self, tenant_id: str, domain: str) -> bool:
        return await self.repository.remove(tenant_id, BLOCK, normalize_domain(domain))

    async def list_allowed(self, tenant_id: str) -> list[DomainListEntry]:
        return await self.repository.list_entries(tenant_id, ALLOW)

    async def list_blocked(self, tenant_id: str) -> list[DomainListEntry]:
        return await self.repository.list_entries(tenant_id, BLOCK)

    async def _add(self, tenant_id: str, kind: str, domain: str, added_by: str | None, reason: str | None) -> bool:
        normalized = normalize_domain(domain)
        if not normalized:
            raise ValueError("domain is empty")
        entry = DomainListEntry(
            tenant_id=tenant_id,
            domain=normalized,
            kind=kind,
            added_by=added_by,
            reason=reason,
            created_at=datetime.now(timezone.utc),
        )
        added = await self.repository.add(entry)
        if added:
            logger.info("domain list updated", extra={"kind": kind, "domain": normalized, "tenant_id": tenant_id})
        return added

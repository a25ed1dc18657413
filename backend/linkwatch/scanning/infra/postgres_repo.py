"""PostgreSQL implementations of the link scanner repositories."""

from __future__ import annotations

import json
import uuid
from datetime import datetime
from typing import Any, Optional

import asyncpg

from linkwatch.scanning.domain.audit import AuditRepository, LinkLogEntry, UserLinkStats
from linkwatch.scanning.domain.domain_lists import DomainListEntry, DomainListRepository
from linkwatch.scanning.domain.review import STATUS_PENDING, ReviewEntry, ReviewRepository
from linkwatch.scanning.domain.signals import Tier
from linkwatch.scanning.domain.tenants import TenantRepository, TenantSettings
from linkwatch.scanning.domain.verdicts import Verdict

_STATS_COLUMNS = {
    Tier.SAFE: "safe_links",
    Tier.WARN: "warned_links",
    Tier.QUARANTINE: "quarantined_links",
    Tier.DELETE: "deleted_links",
}


def _load_json(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, str):
        return json.loads(value)
    return dict(value)


class PostgresDomainListRepository(DomainListRepository):
    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def contains(self, tenant_id: str, kind: str, domain: str) -> bool:
        query = """
        SELECT 1 FROM link_domain_list
        WHERE tenant_id = $1 AND kind = $2 AND domain = $3
        """
        return await self.pool.fetchval(query, tenant_id, kind, domain) is not None

    async def add(self, entry: DomainListEntry) -> bool:
        query = """
        INSERT INTO link_domain_list (tenant_id, kind, domain, added_by, reason, created_at)
        VALUES ($1, $2, $3, $4, $5, $6)
        ON CONFLICT (tenant_id, kind, domain) DO NOTHING
        RETURNING domain
        """
        inserted = await self.pool.fetchval(
            query,
            entry.tenant_id,
            entry.kind,
            entry.domain,
            entry.added_by,
            entry.reason,
            entry.created_at,
        )
        return inserted is not None

    async def remove(self, tenant_id: str, kind: str, domain: str) -> bool:
        query = """
        DELETE FROM link_domain_list
        WHERE tenant_id = $1 AND kind = $2 AND domain = $3
        RETURNING domain
        """
        return await self.pool.fetchval(query, tenant_id, kind, domain) is not None

    async def list_entries(self, tenant_id: str, kind: str) -> list[DomainListEntry]:
        query = """
        SELECT tenant_id, kind, domain, added_by, reason, created_at
        FROM link_domain_list
        WHERE tenant_id = $1 AND kind = $2
        ORDER BY domain
        """
        rows = await self.pool.fetch(query, tenant_id, kind)
        return [_list_entry_from_record(row) for row in rows]


class PostgresReviewRepository(ReviewRepository):
    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def add(self, entry: ReviewEntry) -> ReviewEntry:
        query = """
        INSERT INTO link_review_queue (id, tenant_id, channel_id, message_id, user_id, verdict, status, created_at)
        VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7, $8)
        """
        await self.pool.execute(
            query,
            uuid.UUID(entry.id),
            entry.tenant_id,
            entry.channel_id,
            entry.message_id,
            entry.user_id,
            json.dumps(entry.verdict.to_dict()),
            entry.status,
            entry.created_at,
        )
        return entry

    async def get(self, review_id: str) -> Optional[ReviewEntry]:
        try:
            key = uuid.UUID(review_id)
        except ValueError:
            return None
        query = """
        SELECT id, tenant_id, channel_id, message_id, user_id, verdict, status, reviewer_id, created_at, resolved_at
        FROM link_review_queue
        WHERE id = $1
        """
        record = await self.pool.fetchrow(query, key)
        return _review_from_record(record) if record else None

    async def list_by_status(self, tenant_id: str, status: str, *, limit: int = 50) -> list[ReviewEntry]:
        query = """
        SELECT id, tenant_id, channel_id, message_id, user_id, verdict, status, reviewer_id, created_at, resolved_at
        FROM link_review_queue
        WHERE tenant_id = $1 AND status = $2
        ORDER BY created_at
        LIMIT $3
        """
        rows = await self.pool.fetch(query, tenant_id, status, limit)
        return [_review_from_record(row) for row in rows]

    async def mark_resolved(self, review_id: str, status: str, reviewer_id: str, at: datetime) -> Optional[ReviewEntry]:
        try:
            key = uuid.UUID(review_id)
        except ValueError:
            return None
        query = """
        UPDATE link_review_queue
        SET status = $2, reviewer_id = $3, resolved_at = $4
        WHERE id = $1 AND status = $5
        RETURNING id, tenant_id, channel_id, message_id, user_id, verdict, status, reviewer_id, created_at, resolved_at
        """
        record = await self.pool.fetchrow(query, key, status, reviewer_id, at, STATUS_PENDING)
        return _review_from_record(record) if record else None

    async def count_pending(self) -> int:
        value = await self.pool.fetchval("SELECT count(*) FROM link_review_queue WHERE status = $1", STATUS_PENDING)
        return int(value or 0)


class PostgresAuditRepository(AuditRepository):
    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def record_link(self, entry: LinkLogEntry) -> LinkLogEntry:
        query = """
        INSERT INTO link_log (tenant_id, channel_id, message_id, user_id, original_url, resolved_domain, tier, outcome, verdict, created_at)
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9::jsonb, $10)
        RETURNING id
        """
        log_id = await self.pool.fetchval(
            query,
            entry.tenant_id,
            entry.channel_id,
            entry.message_id,
            entry.user_id,
            entry.verdict.original_url,
            entry.verdict.resolved_domain,
            entry.tier.label,
            entry.outcome,
            json.dumps(entry.verdict.to_dict()),
            entry.created_at,
        )
        return LinkLogEntry(
            tenant_id=entry.tenant_id,
            channel_id=entry.channel_id,
            message_id=entry.message_id,
            user_id=entry.user_id,
            verdict=entry.verdict,
            tier=entry.tier,
            outcome=entry.outcome,
            created_at=entry.created_at,
            id=int(log_id),
        )

    async def bump_user_stats(self, tenant_id: str, user_id: str, tier: Tier) -> UserLinkStats:
        column = _STATS_COLUMNS[tier]
        query = f"""
        INSERT INTO link_user_stats (tenant_id, user_id, total_links, {column}, last_link_at)
        VALUES ($1, $2, 1, 1, now())
        ON CONFLICT (tenant_id, user_id)
        DO UPDATE SET total_links = link_user_stats.total_links + 1,
                      {column} = link_user_stats.{column} + 1,
                      last_link_at = now()
        RETURNING tenant_id, user_id, total_links, safe_links, warned_links, quarantined_links, deleted_links, last_link_at
        """
        record = await self.pool.fetchrow(query, tenant_id, user_id)
        assert record is not None
        return _stats_from_record(record)

    async def get_user_stats(self, tenant_id: str, user_id: str) -> UserLinkStats:
        query = """
        SELECT tenant_id, user_id, total_links, safe_links, warned_links, quarantined_links, deleted_links, last_link_at
        FROM link_user_stats
        WHERE tenant_id = $1 AND user_id = $2
        """
        record = await self.pool.fetchrow(query, tenant_id, user_id)
        return _stats_from_record(record) if record else UserLinkStats(tenant_id=tenant_id, user_id=user_id)

    async def list_link_logs(self, tenant_id: str, *, user_id: str | None = None, limit: int = 50) -> list[LinkLogEntry]:
        query = """
        SELECT id, tenant_id, channel_id, message_id, user_id, tier, outcome, verdict, created_at
        FROM link_log
        WHERE tenant_id = $1 AND ($2::text IS NULL OR user_id = $2)
        ORDER BY created_at DESC, id DESC
        LIMIT $3
        """
        rows = await self.pool.fetch(query, tenant_id, user_id, limit)
        return [_log_from_record(row) for row in rows]


class PostgresTenantRepository(TenantRepository):
    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def get(self, tenant_id: str) -> Optional[TenantSettings]:
        query = """
        SELECT tenant_id, log_channel_id, scanning_enabled
        FROM link_tenant_settings
        WHERE tenant_id = $1
        """
        record = await self.pool.fetchrow(query, tenant_id)
        return _tenant_from_record(record) if record else None

    async def upsert(self, settings: TenantSettings) -> TenantSettings:
        query = """
        INSERT INTO link_tenant_settings (tenant_id, log_channel_id, scanning_enabled, updated_at)
        VALUES ($1, $2, $3, now())
        ON CONFLICT (tenant_id)
        DO UPDATE SET log_channel_id = EXCLUDED.log_channel_id,
                      scanning_enabled = EXCLUDED.scanning_enabled,
                      updated_at = now()
        RETURNING tenant_id, log_channel_id, scanning_enabled
        """
        record = await self.pool.fetchrow(query, settings.tenant_id, settings.log_channel_id, settings.scanning_enabled)
        assert record is not None
        return _tenant_from_record(record)


def _list_entry_from_record(record: asyncpg.Record) -> DomainListEntry:
    return DomainListEntry(
        tenant_id=record["tenant_id"],
        domain=record["domain"],
        kind=record["kind"],
        added_by=record["added_by"],
        reason=record["reason"],
        created_at=record["created_at"],
    )


def _review_from_record(record: asyncpg.Record) -> ReviewEntry:
    return ReviewEntry(
        id=str(record["id"]),
        tenant_id=record["tenant_id"],
        channel_id=record["channel_id"],
        message_id=record["message_id"],
        user_id=record["user_id"],
        verdict=Verdict.from_dict(_load_json(record["verdict"])),
        status=record["status"],
        reviewer_id=record["reviewer_id"],
        created_at=record["created_at"],
        resolved_at=record["resolved_at"],
    )


def _log_from_record(record: asyncpg.Record) -> LinkLogEntry:
    return LinkLogEntry(
        tenant_id=record["tenant_id"],
        channel_id=record["channel_id"],
        message_id=record["message_id"],
        user_id=record["user_id"],
        verdict=Verdict.from_dict(_load_json(record["verdict"])),
        tier=Tier[record["tier"]],
        outcome=record["outcome"],
        created_at=record["created_at"],
        id=int(record["id"]),
    )


def _stats_from_record(record: asyncpg.Record) -> UserLinkStats:
    return UserLinkStats(
        tenant_id=record["tenant_id"],
        user_id=record["user_id"],
        total_links=int(record["total_links"]),
        safe_links=int(record["safe_links"]),
        warned_links=int(record["warned_links"]),
        quarantined_links=int(record["quarantined_links"]),
        deleted_links=int(record["deleted_links"]),
        last_link_at=record["last_link_at"],
    )


def _tenant_from_record(record: asyncpg.Record) -> TenantSettings:
    return TenantSettings(
        tenant_id=record["tenant_id"],
        log_channel_id=record["log_channel_id"],
        scanning_enabled=bool(record["scanning_enabled"]),
    )

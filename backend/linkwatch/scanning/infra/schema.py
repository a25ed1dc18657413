"""DDL for the link scanner tables."""

from __future__ import annotations

import asyncpg

STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS link_domain_list (
        tenant_id TEXT NOT NULL,
        kind TEXT NOT NULL CHECK (kind IN ('allow', 'block')),
        domain TEXT NOT NULL,
        added_by TEXT,
        reason TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        PRIMARY KEY (tenant_id, kind, domain)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS link_review_queue (
        id UUID PRIMARY KEY,
        tenant_id TEXT NOT NULL,
        channel_id TEXT NOT NULL,
        message_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        verdict JSONB NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        reviewer_id TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        resolved_at TIMESTAMPTZ
    )
    """,
    "CREATE INDEX IF NOT EXISTS link_review_queue_status_idx ON link_review_queue (tenant_id, status, created_at)",
    """
    CREATE TABLE IF NOT EXISTS link_log (
        id BIGSERIAL PRIMARY KEY,
        tenant_id TEXT NOT NULL,
        channel_id TEXT NOT NULL,
        message_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        original_url TEXT NOT NULL,
        resolved_domain TEXT NOT NULL,
        tier TEXT NOT NULL,
        outcome TEXT NOT NULL,
        verdict JSONB NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE INDEX IF NOT EXISTS link_log_tenant_user_idx ON link_log (tenant_id, user_id, created_at DESC)",
    """
    CREATE TABLE IF NOT EXISTS link_user_stats (
        tenant_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        total_links INTEGER NOT NULL DEFAULT 0,
        safe_links INTEGER NOT NULL DEFAULT 0,
        warned_links INTEGER NOT NULL DEFAULT 0,
        quarantined_links INTEGER NOT NULL DEFAULT 0,
        deleted_links INTEGER NOT NULL DEFAULT 0,
        last_link_at TIMESTAMPTZ,
        PRIMARY KEY (tenant_id, user_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS link_tenant_settings (
        tenant_id TEXT PRIMARY KEY,
        log_channel_id TEXT,
        scanning_enabled BOOLEAN NOT NULL DEFAULT TRUE,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
)


async def ensure_schema(pool: asyncpg.Pool) -> None:
    async with pool.acquire() as conn:
        async with conn.transaction():
            for statement in STATEMENTS:
                await conn.execute(statement)

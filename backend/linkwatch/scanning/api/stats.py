"""User statistics, link log and rate-limit inspection."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel

from linkwatch.api.ops import require_admin
from linkwatch.scanning.api.deps import API_PREFIX, state_dep
from linkwatch.scanning.domain.audit import LinkLogEntry, UserLinkStats
from linkwatch.scanning.domain.container import ScannerState

router = APIRouter(prefix=API_PREFIX, tags=["links-stats"], dependencies=[Depends(require_admin)])


class UserStatsOut(BaseModel):
    tenant_id: str
    user_id: str
    total_links: int
    safe_links: int
    warned_links: int
    quarantined_links: int
    deleted_links: int
    last_link_at: datetime | None

    @classmethod
    def from_domain(cls, stats: UserLinkStats) -> "UserStatsOut":
        return cls(
            tenant_id=stats.tenant_id,
            user_id=stats.user_id,
            total_links=stats.total_links,
            safe_links=stats.safe_links,
            warned_links=stats.warned_links,
            quarantined_links=stats.quarantined_links,
            deleted_links=stats.deleted_links,
            last_link_at=stats.last_link_at,
        )


class LinkLogOut(BaseModel):
    id: int | None
    channel_id: str
    message_id: str
    user_id: str
    tier: str
    outcome: str
    verdict: dict[str, Any]
    created_at: datetime

    @classmethod
    def from_domain(cls, entry: LinkLogEntry) -> "LinkLogOut":
        return cls(
            id=entry.id,
            channel_id=entry.channel_id,
            message_id=entry.message_id,
            user_id=entry.user_id,
            tier=entry.tier.label,
            outcome=entry.outcome,
            verdict=entry.verdict.to_dict(),
            created_at=entry.created_at,
        )


class RateStatusOut(BaseModel):
    count: int
    remaining: int
    reset_in_seconds: float


@router.get("/tenants/{tenant_id}/users/{user_id}/stats", response_model=UserStatsOut)
async def get_user_stats(tenant_id: str, user_id: str, state: ScannerState = Depends(state_dep)) -> UserStatsOut:
    stats = await state.audit.get_user_stats(tenant_id, user_id)
    return UserStatsOut.from_domain(stats)


@router.get("/tenants/{tenant_id}/logs", response_model=list[LinkLogOut])
async def list_link_logs(
    tenant_id: str,
    user_id: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    state: ScannerState = Depends(state_dep),
) -> list[LinkLogOut]:
    entries = await state.audit.list_link_logs(tenant_id, user_id=user_id, limit=limit)
    return [LinkLogOut.from_domain(entry) for entry in entries]


@router.get("/tenants/{tenant_id}/users/{user_id}/rate-limit", response_model=RateStatusOut)
async def get_rate_status(tenant_id: str, user_id: str, state: ScannerState = Depends(state_dep)) -> RateStatusOut:
    current = state.limiter.status(tenant_id, user_id)
    return RateStatusOut(count=current.count, remaining=current.remaining, reset_in_seconds=current.reset_in_seconds)


@router.delete("/tenants/{tenant_id}/users/{user_id}/rate-limit", status_code=status.HTTP_204_NO_CONTENT)
async def reset_rate_limit(tenant_id: str, user_id: str, state: ScannerState = Depends(state_dep)) -> Response:
    state.limiter.reset(tenant_id, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

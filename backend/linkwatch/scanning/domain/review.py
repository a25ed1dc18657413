"""Moderator review queue for quarantined links."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional, Protocol

from linkwatch.obs import metrics as obs_metrics
from linkwatch.scanning.domain.gateway import ChatGateway, ChatMessage, EnforcementActionError
from linkwatch.scanning.domain.verdicts import Verdict

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_DENIED = "denied"

_DECISIONS = {
    "approve": STATUS_APPROVED,
    "approved": STATUS_APPROVED,
    "deny": STATUS_DENIED,
    "denied": STATUS_DENIED,
}


class ReviewError(Exception):
    """Base class for review workflow errors."""


class ReviewNotFound(ReviewError):
    pass


class ReviewAlreadyResolved(ReviewError):
    pass


class InvalidReviewDecision(ReviewError):
    pass


@dataclass(frozen=True)
class ReviewEntry:
    id: str
    tenant_id: str
    channel_id: str
    message_id: str
    user_id: str
    verdict: Verdict
    status: str = STATUS_PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    resolved_at: Optional[datetime] = None
    reviewer_id: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.status == STATUS_PENDING


@dataclass(frozen=True)
class ReviewResolution:
    entry: ReviewEntry
    reposted: bool


class ReviewRepository(Protocol):
    async def add(self, entry: ReviewEntry) -> ReviewEntry:
        ...

    async def get(self, review_id: str) -> Optional[ReviewEntry]:
        ...

    async def list_by_status(self, tenant_id: str, status: str, *, limit: int = 50) -> list[ReviewEntry]:
        ...

    async def mark_resolved(self, review_id: str, status: str, reviewer_id: str, at: datetime) -> Optional[ReviewEntry]:
        """Resolve a pending entry; ``None`` when it is missing or no longer pending."""

    async def count_pending(self) -> int:
        ...


@dataclass
class InMemoryReviewRepository(ReviewRepository):
    _entries: dict[str, ReviewEntry] = field(default_factory=dict)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def add(self, entry: ReviewEntry) -> ReviewEntry:
        async with self._lock:
            self._entries[entry.id] = entry
        return entry

    async def get(self, review_id: str) -> Optional[ReviewEntry]:
        return self._entries.get(review_id)

    async def list_by_status(self, tenant_id: str, status: str, *, limit: int = 50) -> list[ReviewEntry]:
        items = [entry for entry in self._entries.values() if entry.tenant_id == tenant_id and entry.status == status]
        items.sort(key=lambda entry: entry.created_at)
        return items[:limit]

    async def mark_resolved(self, review_id: str, status: str, reviewer_id: str, at: datetime) -> Optional[ReviewEntry]:
        async with self._lock:
            entry = self._entries.get(review_id)
            if entry is None or not entry.is_pending:
                return None
            updated = replace(entry, status=status, reviewer_id=reviewer_id, resolved_at=at)
            self._entries[review_id] = updated
            return updated

    async def count_pending(self) -> int:
        return sum(1 for entry in self._entries.values() if entry.is_pending)


def approval_message(entry: ReviewEntry, reviewer_id: str) -> str:
    return (
        f"Link approved by <@{reviewer_id}> after review: {entry.verdict.original_url}\n"
        f"Originally posted by <@{entry.user_id}>"
    )


class ReviewQueue:
    """Pending → approved | denied; each entry resolves exactly once."""

    def __init__(self, repository: ReviewRepository, gateway: ChatGateway) -> None:
        self.repository = repository
        self.gateway = gateway

    async def enqueue(self, message: ChatMessage, verdict: Verdict) -> ReviewEntry:
        entry = ReviewEntry(
            id=str(uuid.uuid4()),
            tenant_id=message.tenant_id,
            channel_id=message.channel_id,
            message_id=message.message_id,
            user_id=message.user_id,
            verdict=verdict,
        )
        stored = await self.repository.add(entry)
        await self._refresh_backlog()
        logger.info("review enqueued", extra={"review_id": stored.id, "domain": verdict.resolved_domain})
        return stored

    async def get(self, review_id: str) -> ReviewEntry:
        entry = await self.repository.get(review_id)
        if entry is None:
            raise ReviewNotFound(review_id)
        return entry

    async def list_pending(self, tenant_id: str, *, limit: int = 50) -> list[ReviewEntry]:
        return await self.repository.list_by_status(tenant_id, STATUS_PENDING, limit=limit)

    async def list_by_status(self, tenant_id: str, status: str, *, limit: int = 50) -> list[ReviewEntry]:
        return await self.repository.list_by_status(tenant_id, status, limit=limit)

    async def resolve_review(self, review_id: str, decision: str, reviewer_id: str) -> ReviewResolution:
        status = _DECISIONS.get(decision.strip().lower())
        if status is None:
            raise InvalidReviewDecision(decision)
        resolved = await self.repository.mark_resolved(review_id, status, reviewer_id, datetime.now(timezone.utc))
        if resolved is None:
            existing = await self.repository.get(review_id)
            if existing is None:
                raise ReviewNotFound(review_id)
            raise ReviewAlreadyResolved(review_id)
        await self._refresh_backlog()

        reposted = False
        if status == STATUS_APPROVED:
            try:
                await self.gateway.post_channel_message(resolved.tenant_id, resolved.channel_id, approval_message(resolved, reviewer_id))
                reposted = True
            except EnforcementActionError as exc:
                logger.warning("approved link could not be re-posted", extra={"review_id": review_id, "error": exc.detail})
        logger.info("review resolved", extra={"review_id": review_id, "status": status, "reviewer_id": reviewer_id})
        return ReviewResolution(entry=resolved, reposted=reposted)

    async def _refresh_backlog(self) -> None:
        try:
            obs_metrics.REVIEW_BACKLOG_GAUGE.set(await self.repository.count_pending())
        except Exception as exc:  # noqa: BLE001
            logger.debug("review backlog refresh failed", extra={"error": str(exc)})

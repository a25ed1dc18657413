"""Review queue endpoints for quarantined links."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from linkwatch.api.ops import require_admin
from linkwatch.scanning.api.deps import API_PREFIX, state_dep
from linkwatch.scanning.domain.container import ScannerState
from linkwatch.scanning.domain.review import (
    InvalidReviewDecision,
    ReviewAlreadyResolved,
    ReviewEntry,
    ReviewNotFound,
)

router = APIRouter(prefix=API_PREFIX, tags=["links-review"], dependencies=[Depends(require_admin)])


class ReviewEntryOut(BaseModel):
    id: str
    tenant_id: str
    channel_id: str
    message_id: str
    user_id: str
    status: str
    original_url: str
    resolved_domain: str
    signals: list[str]
    heuristic_score: int
    verdict: dict[str, Any]
    reviewer_id: str | None
    created_at: datetime
    resolved_at: datetime | None

    @classmethod
    def from_domain(cls, entry: ReviewEntry) -> "ReviewEntryOut":
        return cls(
            id=entry.id,
            tenant_id=entry.tenant_id,
            channel_id=entry.channel_id,
            message_id=entry.message_id,
            user_id=entry.user_id,
            status=entry.status,
            original_url=entry.verdict.original_url,
            resolved_domain=entry.verdict.resolved_domain,
            signals=[signal.value for signal in entry.verdict.signals],
            heuristic_score=entry.verdict.heuristic_score,
            verdict=entry.verdict.to_dict(),
            reviewer_id=entry.reviewer_id,
            created_at=entry.created_at,
            resolved_at=entry.resolved_at,
        )


class ReviewDecisionIn(BaseModel):
    decision: str = Field(pattern=r"^(approve|deny)$")
    reviewer_id: str = Field(min_length=1, description="Moderator resolving the entry")


class ReviewDecisionOut(BaseModel):
    entry: ReviewEntryOut
    reposted: bool


@router.get("/tenants/{tenant_id}/reviews", response_model=list[ReviewEntryOut])
async def list_reviews(
    tenant_id: str,
    *,
    review_status: str = Query(default="pending", alias="status", pattern=r"^(pending|approved|denied)$"),
    limit: int = Query(default=50, ge=1, le=100),
    state: ScannerState = Depends(state_dep),
) -> list[ReviewEntryOut]:
    items = await state.reviews.list_by_status(tenant_id, review_status, limit=limit)
    return [ReviewEntryOut.from_domain(item) for item in items]


@router.get("/reviews/{review_id}", response_model=ReviewEntryOut)
async def get_review(review_id: str, state: ScannerState = Depends(state_dep)) -> ReviewEntryOut:
    try:
        entry = await state.reviews.get(review_id)
    except ReviewNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="review_not_found") from exc
    return ReviewEntryOut.from_domain(entry)


@router.post("/reviews/{review_id}/decision", response_model=ReviewDecisionOut)
async def resolve_review(
    review_id: str,
    body: ReviewDecisionIn,
    state: ScannerState = Depends(state_dep),
) -> ReviewDecisionOut:
    try:
        resolution = await state.reviews.resolve_review(review_id, body.decision, body.reviewer_id)
    except ReviewNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="review_not_found") from exc
    except ReviewAlreadyResolved as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="review_already_resolved") from exc
    except InvalidReviewDecision as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="invalid_decision") from exc
    return ReviewDecisionOut(entry=ReviewEntryOut.from_domain(resolution.entry), reposted=resolution.reposted)

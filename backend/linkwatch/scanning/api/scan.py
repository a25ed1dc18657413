"""Dry-run scanning: verdict and tier without enforcement."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from linkwatch.api.ops import require_admin
from linkwatch.scanning.api.deps import API_PREFIX, state_dep
from linkwatch.scanning.domain.container import ScannerState

router = APIRouter(prefix=API_PREFIX, tags=["links-scan"], dependencies=[Depends(require_admin)])


class ScanIn(BaseModel):
    url: str = Field(min_length=1, max_length=4096)


class ScanOut(BaseModel):
    url: str
    tier: str
    triggered_by: list[str]
    reason: str
    verdict: dict[str, Any]


@router.post("/tenants/{tenant_id}/scan", response_model=ScanOut)
async def dry_run_scan(tenant_id: str, body: ScanIn, state: ScannerState = Depends(state_dep)) -> ScanOut:
    outcome = await state.pipeline.scan_only(body.url.strip(), tenant_id)
    return ScanOut(
        url=outcome.url,
        tier=outcome.decision.tier.label,
        triggered_by=[signal.value for signal in outcome.decision.triggered_by],
        reason=outcome.decision.reason,
        verdict=outcome.verdict.to_dict(),
    )

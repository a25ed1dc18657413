"""Allow and block list administration."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Path, Response, status
from pydantic import BaseModel, Field

from linkwatch.api.ops import require_admin
from linkwatch.scanning.api.deps import API_PREFIX, state_dep
from linkwatch.scanning.domain.container import ScannerState
from linkwatch.scanning.domain.domain_lists import ALLOW, DomainListEntry

router = APIRouter(prefix=API_PREFIX, tags=["links-domain-lists"], dependencies=[Depends(require_admin)])

_KIND_PATTERN = r"^(allow|block)$"


class DomainEntryOut(BaseModel):
    domain: str
    kind: str
    added_by: str | None
    reason: str | None
    created_at: datetime

    @classmethod
    def from_domain(cls, entry: DomainListEntry) -> "DomainEntryOut":
        return cls(
            domain=entry.domain,
            kind=entry.kind,
            added_by=entry.added_by,
            reason=entry.reason,
            created_at=entry.created_at,
        )


class DomainEntryIn(BaseModel):
    domain: str = Field(min_length=1, max_length=253)
    added_by: str | None = None
    reason: str | None = Field(default=None, max_length=500)


@router.get("/tenants/{tenant_id}/lists/{kind}", response_model=list[DomainEntryOut])
async def list_domains(
    tenant_id: str,
    kind: str = Path(pattern=_KIND_PATTERN),
    state: ScannerState = Depends(state_dep),
) -> list[DomainEntryOut]:
    if kind == ALLOW:
        entries = await state.domain_lists.list_allowed(tenant_id)
    else:
        entries = await state.domain_lists.list_blocked(tenant_id)
    return [DomainEntryOut.from_domain(entry) for entry in entries]


@router.post("/tenants/{tenant_id}/lists/{kind}", status_code=status.HTTP_201_CREATED)
async def add_domain(
    tenant_id: str,
    body: DomainEntryIn,
    kind: str = Path(pattern=_KIND_PATTERN),
    state: ScannerState = Depends(state_dep),
) -> dict[str, str]:
    try:
        if kind == ALLOW:
            added = await state.domain_lists.add_allowed(tenant_id, body.domain, added_by=body.added_by, reason=body.reason)
        else:
            added = await state.domain_lists.add_blocked(tenant_id, body.domain, added_by=body.added_by, reason=body.reason)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="invalid_domain") from exc
    if not added:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="domain_already_listed")
    return {"status": "added", "kind": kind}


@router.delete("/tenants/{tenant_id}/lists/{kind}/{domain}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_domain(
    tenant_id: str,
    domain: str,
    kind: str = Path(pattern=_KIND_PATTERN),
    state: ScannerState = Depends(state_dep),
) -> Response:
    if kind == ALLOW:
        removed = await state.domain_lists.remove_allowed(tenant_id, domain)
    else:
        removed = await state.domain_lists.remove_blocked(tenant_id, domain)
    if not removed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="domain_not_listed")
    return Response(status_code=status.HTTP_204_NO_CONTENT)

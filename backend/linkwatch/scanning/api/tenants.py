"""Tenant scanner settings."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from linkwatch.api.ops import require_admin
from linkwatch.scanning.api.deps import API_PREFIX, state_dep
from linkwatch.scanning.domain.container import ScannerState
from linkwatch.scanning.domain.tenants import TenantSettings

router = APIRouter(prefix=API_PREFIX, tags=["links-tenants"], dependencies=[Depends(require_admin)])


class TenantSettingsOut(BaseModel):
    tenant_id: str
    log_channel_id: str | None
    scanning_enabled: bool

    @classmethod
    def from_domain(cls, item: TenantSettings) -> "TenantSettingsOut":
        return cls(tenant_id=item.tenant_id, log_channel_id=item.log_channel_id, scanning_enabled=item.scanning_enabled)


class TenantSettingsPatch(BaseModel):
    log_channel_id: str | None = None
    scanning_enabled: bool | None = None
    clear_log_channel: bool = False


@router.get("/tenants/{tenant_id}/settings", response_model=TenantSettingsOut)
async def get_settings(tenant_id: str, state: ScannerState = Depends(state_dep)) -> TenantSettingsOut:
    return TenantSettingsOut.from_domain(await state.tenants.get(tenant_id))


@router.patch("/tenants/{tenant_id}/settings", response_model=TenantSettingsOut)
async def update_settings(
    tenant_id: str,
    body: TenantSettingsPatch,
    state: ScannerState = Depends(state_dep),
) -> TenantSettingsOut:
    updated = await state.tenants.update(
        tenant_id,
        log_channel_id=body.log_channel_id,
        scanning_enabled=body.scanning_enabled,
        clear_log_channel=body.clear_log_channel,
    )
    return TenantSettingsOut.from_domain(updated)

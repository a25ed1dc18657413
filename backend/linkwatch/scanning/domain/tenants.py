"""Per-tenant scanner settings."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Optional, Protocol


@dataclass(frozen=True)
class TenantSettings:
    tenant_id: str
    log_channel_id: Optional[str] = None
    scanning_enabled: bool = True


class TenantRepository(Protocol):
    async def get(self, tenant_id: str) -> Optional[TenantSettings]:
        ...

    async def upsert(self, settings: TenantSettings) -> TenantSettings:
        ...


@dataclass
class InMemoryTenantRepository(TenantRepository):
    _items: dict[str, TenantSettings] = field(default_factory=dict)

    async def get(self, tenant_id: str) -> Optional[TenantSettings]:
        return self._items.get(tenant_id)

    async def upsert(self, settings: TenantSettings) -> TenantSettings:
        self._items[settings.tenant_id] = settings
        return settings


class TenantSettingsService:
    """Tenants without a stored row scan with defaults."""

    def __init__(self, repository: TenantRepository) -> None:
        self.repository = repository

    async def get(self, tenant_id: str) -> TenantSettings:
        return await self.repository.get(tenant_id) or TenantSettings(tenant_id=tenant_id)

    async def update(
        self,
        tenant_id: str,
        *,
        log_channel_id: Optional[str] = None,
        scanning_enabled: Optional[bool] = None,
        clear_log_channel: bool = False,
    ) -> TenantSettings:
        current = await self.get(tenant_id)
        changes: dict[str, object] = {}
        if clear_log_channel:
            changes["log_channel_id"] = None
        elif log_channel_id is not None:
            changes["log_channel_id"] = log_channel_id
        if scanning_enabled is not None:
            changes["scanning_enabled"] = scanning_enabled
        return await self.repository.upsert(replace(current, **changes))

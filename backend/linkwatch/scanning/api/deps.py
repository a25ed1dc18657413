"""Shared FastAPI dependencies for the link scanner admin API."""

from __future__ import annotations

from linkwatch.scanning.domain.container import ScannerState, get_state

API_PREFIX = "/api/links/v1"


async def state_dep() -> ScannerState:
    return get_state()

"""Pydantic schemas for the diagnostics endpoint."""
from __future__ import annotations

from datetime import datetime

from ledgerbridge.models import HealthStatus
from ledgerbridge.schemas.common import CamelModel, OrgRequest


class DiagnosticsRequest(OrgRequest):
    save: bool = False
    last_test_forward_id: str | None = None
    last_test_reverse_id: str | None = None
    last_verified_at: datetime | None = None


class ConnectionHealthRead(CamelModel):
    connected: bool
    expires_in_sec: int | None = None
    realm_id: str | None = None


class DiagnosticsResponse(CamelModel):
    health: ConnectionHealthRead
    missing: list[str]
    warnings: list[str]
    overall: HealthStatus


__all__ = ["ConnectionHealthRead", "DiagnosticsRequest", "DiagnosticsResponse"]

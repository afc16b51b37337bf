"""Pydantic schemas for bucket mappings and the account cache."""
from __future__ import annotations

from pydantic import ConfigDict, Field

from ledgerbridge.schemas.common import CamelModel, OrgRequest


class MappingUpsertRequest(OrgRequest):
    provider: str | None = Field(default=None, max_length=32)
    bucket: str = Field(..., min_length=1, max_length=64)
    external_account_id: str = Field(..., min_length=1, max_length=64)
    name: str | None = Field(default=None, max_length=255)


class MappingRead(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    org_id: str
    provider: str
    bucket: str
    external_account_id: str
    name: str | None = None


class MappingListResponse(CamelModel):
    mappings: list[MappingRead]
    missing: list[str]
    warnings: list[str]


class AccountRefreshRequest(OrgRequest):
    pass


class AccountRefreshResponse(CamelModel):
    count: int


__all__ = [
    "AccountRefreshRequest",
    "AccountRefreshResponse",
    "MappingListResponse",
    "MappingRead",
    "MappingUpsertRequest",
]

"""Pydantic schemas for transaction import requests."""
from __future__ import annotations

from typing import Any

from pydantic import Field

from ledgerbridge.schemas.common import CamelModel, OrgRequest


class IngestRequest(OrgRequest):
    source_label: str = Field(default="unknown", min_length=1, max_length=64)
    rows: list[Any] = Field(default_factory=list)


class IngestRowError(CamelModel):
    row: int
    reason: str


class IngestDuplicate(CamelModel):
    row: int
    idempotency_key: str


class IngestResponse(CamelModel):
    inserted_count: int
    inserted_ids: list[str]
    duplicates: list[IngestDuplicate]
    errors: list[IngestRowError]


__all__ = ["IngestDuplicate", "IngestRequest", "IngestResponse", "IngestRowError"]

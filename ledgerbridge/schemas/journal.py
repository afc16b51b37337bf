"""Pydantic schemas for journal preview, commit, test posting and verification."""
from __future__ import annotations

from datetime import date
from typing import Any, Literal

from pydantic import Field

from ledgerbridge.schemas.common import CamelModel, OrgRequest


class JournalPeriodRequest(OrgRequest):
    period_start: date
    period_end: date
    mode: Literal["summarized", "per_order"] = "summarized"


class JournalPreviewResponse(CamelModel):
    org_id: str
    provider: str
    period_start: date
    period_end: date
    mode: str
    missing: list[str]
    journals: list[dict[str, Any]]


class JournalCommitItem(CamelModel):
    export_id: str
    status: str
    txn_date: date
    external_id: str | None = None
    error: str | None = None


class JournalCommitResponse(CamelModel):
    results: list[JournalCommitItem]


class TestReverseRequest(OrgRequest):
    same_day_reverse: bool = False
    note: str | None = Field(default=None, max_length=255)


class TestReverseResponse(CamelModel):
    forward_id: str
    reverse_id: str | None
    txn_date: date = Field(alias="date")
    reverse_date: date
    error: str | None = None


class VerifyRequest(OrgRequest):
    ids: list[str] = Field(default_factory=list)
    expected_dates: dict[str, date] | None = None


class VerifyResult(CamelModel):
    id: str
    found: bool
    txn_date: date | None = None
    date_matches: bool | None = None
    error: str | None = None


class VerifyResponse(CamelModel):
    results: list[VerifyResult]


__all__ = [
    "JournalCommitItem",
    "JournalCommitResponse",
    "JournalPeriodRequest",
    "JournalPreviewResponse",
    "TestReverseRequest",
    "TestReverseResponse",
    "VerifyRequest",
    "VerifyResponse",
    "VerifyResult",
]

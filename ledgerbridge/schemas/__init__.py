"""Pydantic schemas package."""

from .common import CamelModel, OrgRequest
from .diagnostics import ConnectionHealthRead, DiagnosticsRequest, DiagnosticsResponse
from .ingest import IngestDuplicate, IngestRequest, IngestResponse, IngestRowError
from .journal import (
    JournalCommitItem,
    JournalCommitResponse,
    JournalPeriodRequest,
    JournalPreviewResponse,
    TestReverseRequest,
    TestReverseResponse,
    VerifyRequest,
    VerifyResponse,
    VerifyResult,
)
from .mapping import (
    AccountRefreshRequest,
    AccountRefreshResponse,
    MappingListResponse,
    MappingRead,
    MappingUpsertRequest,
)
from .profit import PeriodProfitResponse

__all__ = [
    "AccountRefreshRequest",
    "AccountRefreshResponse",
    "CamelModel",
    "ConnectionHealthRead",
    "DiagnosticsRequest",
    "DiagnosticsResponse",
    "IngestDuplicate",
    "IngestRequest",
    "IngestResponse",
    "IngestRowError",
    "JournalCommitItem",
    "JournalCommitResponse",
    "JournalPeriodRequest",
    "JournalPreviewResponse",
    "MappingListResponse",
    "MappingRead",
    "MappingUpsertRequest",
    "OrgRequest",
    "PeriodProfitResponse",
    "TestReverseRequest",
    "TestReverseResponse",
    "VerifyRequest",
    "VerifyResponse",
    "VerifyResult",
]

"""Typed failures raised by the ledger sync services."""
from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from typing import Any


class LedgerSyncError(RuntimeError):
    """Base class for ledger sync service errors."""


class ValidationError(LedgerSyncError):
    """Raised when an input row, date or mapping request is malformed."""


class OrganizationNotFoundError(LedgerSyncError):
    """Raised when the organization id is unknown."""


class DuplicateTransactionError(LedgerSyncError):
    """Raised when an imported row resolves to an existing idempotency key."""

    def __init__(self, idempotency_key: str) -> None:
        super().__init__(f"Duplicate row skipped: {idempotency_key}")
        self.idempotency_key = idempotency_key


class NotConnectedError(LedgerSyncError):
    """Raised when the organization has no usable ledger credential."""


class UnsupportedProviderError(LedgerSyncError):
    """Raised when the configured ledger provider has no client implementation."""

    def __init__(self, provider: str) -> None:
        super().__init__(f"Unsupported ledger provider '{provider}'")
        self.provider = provider


class MappingIncompleteError(LedgerSyncError):
    """Raised when required buckets are unmapped and a commit was requested."""

    def __init__(self, missing: Sequence[str]) -> None:
        super().__init__(f"Missing mappings: {', '.join(missing)}")
        self.missing = list(missing)


class ExternalApiError(LedgerSyncError):
    """Raised when the ledger provider rejects a call or cannot be reached."""

    def __init__(self, message: str, *, status_code: int | None = None, retryable: bool = False) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable

    @classmethod
    def from_status(cls, status_code: int, detail: Any) -> "ExternalApiError":
        return cls(
            f"Ledger provider call failed {status_code}: {detail}",
            status_code=status_code,
            retryable=status_code >= 500,
        )


class PartialSequenceError(LedgerSyncError):
    """Raised when the forward test posting succeeded but its reversal did not."""

    def __init__(self, *, forward_id: str, txn_date: date, reverse_date: date, reason: str) -> None:
        super().__init__(f"Reverse posting failed after forward entry {forward_id}: {reason}")
        self.forward_id = forward_id
        self.txn_date = txn_date
        self.reverse_date = reverse_date
        self.reason = reason


class VerificationMismatchError(LedgerSyncError):
    """Raised on request when posted entries are missing or carry unexpected dates."""

    def __init__(self, failed_ids: Sequence[str]) -> None:
        super().__init__(f"Unverified journal entries: {', '.join(failed_ids)}")
        self.failed_ids = list(failed_ids)


class AlertChannelError(LedgerSyncError):
    """Raised by an alert channel that could not deliver a message."""

    def __init__(self, channel: str, message: str) -> None:
        super().__init__(f"{channel}: {message}")
        self.channel = channel


__all__ = [
    "AlertChannelError",
    "DuplicateTransactionError",
    "ExternalApiError",
    "LedgerSyncError",
    "MappingIncompleteError",
    "NotConnectedError",
    "OrganizationNotFoundError",
    "PartialSequenceError",
    "UnsupportedProviderError",
    "ValidationError",
    "VerificationMismatchError",
]

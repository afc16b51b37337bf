"""Checks that previously posted journal entries exist in the ledger provider."""
from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import date

from sqlalchemy.orm import Session

from ledgerbridge.core.config import Settings, get_settings
from ledgerbridge.services.connections import load_connection
from ledgerbridge.services.errors import ExternalApiError, LedgerSyncError, VerificationMismatchError
from ledgerbridge.services.ledger_client import (
    LedgerClient,
    LedgerClientFactory,
    ledger_client_factory,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class VerificationResult:
    id: str
    found: bool
    txn_date: date | None = None
    date_matches: bool | None = None
    error: str | None = None

    @property
    def verified(self) -> bool:
        return self.found and self.date_matches is not False


class VerificationProbe:
    """Re-reads posted entry ids; a missing entry is a normal result, not an error."""

    def __init__(
        self,
        session: Session,
        *,
        settings: Settings | None = None,
        client_factory: LedgerClientFactory | None = None,
    ) -> None:
        self._session = session
        self._settings = settings or get_settings()
        self._provider = self._settings.ledger_provider
        self._client_factory = client_factory or ledger_client_factory(self._settings)

    def verify(
        self,
        org_id: str,
        ids: Sequence[str],
        expected_dates: Mapping[str, date] | None = None,
    ) -> list[VerificationResult]:
        unique_ids = [entry_id for entry_id in dict.fromkeys(str(i) for i in ids) if entry_id]
        if not unique_ids:
            return []
        expected = expected_dates or {}

        connection = load_connection(self._session, org_id, self._provider)
        if not connection.connected:
            reason = f"Organization '{org_id}' is not connected to {self._provider}"
            return [VerificationResult(id=entry_id, found=False, error=reason) for entry_id in unique_ids]

        try:
            client = self._client_factory(connection)
        except LedgerSyncError as exc:
            return [VerificationResult(id=entry_id, found=False, error=str(exc)) for entry_id in unique_ids]

        results: list[VerificationResult] = []
        try:
            for entry_id in unique_ids:
                results.append(self._verify_one(client, entry_id, expected.get(entry_id)))
        finally:
            client.close()

        logger.info(
            "verified journal entries",
            extra={
                "org_id": org_id,
                "requested": len(unique_ids),
                "found": sum(1 for result in results if result.found),
            },
        )
        return results

    @staticmethod
    def _verify_one(client: LedgerClient, entry_id: str, expected: date | None) -> VerificationResult:
        try:
            record = client.get_journal_entry(entry_id)
        except ExternalApiError as exc:
            return VerificationResult(id=entry_id, found=False, error=str(exc))
        if record is None:
            return VerificationResult(id=entry_id, found=False)
        matches = None if expected is None or record.txn_date is None else record.txn_date == expected
        return VerificationResult(id=entry_id, found=True, txn_date=record.txn_date, date_matches=matches)


def require_verified(results: Sequence[VerificationResult]) -> None:
    """Raise ``VerificationMismatchError`` when any entry is missing or misdated."""
    failed = [result.id for result in results if not result.verified]
    if failed:
        raise VerificationMismatchError(failed)


__all__ = ["VerificationProbe", "VerificationResult", "require_verified"]

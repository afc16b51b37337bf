from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy.orm import Session

from conftest import ORG_ID, FakeLedger, connect_org
from ledgerbridge.services.errors import VerificationMismatchError
from ledgerbridge.services.verification import VerificationProbe, require_verified


def _seed_entry(fake_ledger: FakeLedger, entry_id: str, txn_date: str) -> None:
    fake_ledger.entries[entry_id] = {"Id": entry_id, "TxnDate": txn_date, "PrivateNote": "seeded", "Line": []}


def test_unknown_id_is_not_found_without_raising(db_session: Session, settings, client_factory) -> None:
    connect_org(db_session)
    verifier = VerificationProbe(db_session, settings=settings, client_factory=client_factory)

    results = verifier.verify(ORG_ID, ["does-not-exist"])

    assert len(results) == 1
    assert results[0].found is False
    assert results[0].error is None


def test_found_entries_report_their_date(db_session: Session, settings, client_factory, fake_ledger: FakeLedger) -> None:
    connect_org(db_session)
    _seed_entry(fake_ledger, "101", "2024-03-31")
    _seed_entry(fake_ledger, "102", "2024-04-01")
    verifier = VerificationProbe(db_session, settings=settings, client_factory=client_factory)

    results = verifier.verify(
        ORG_ID,
        ["101", "102", "101"],
        expected_dates={"101": date(2024, 3, 31), "102": date(2024, 3, 31)},
    )

    assert [(r.id, r.found, r.txn_date, r.date_matches) for r in results] == [
        ("101", True, date(2024, 3, 31), True),
        ("102", True, date(2024, 4, 1), False),
    ]
    with pytest.raises(VerificationMismatchError) as excinfo:
        require_verified(results)
    assert excinfo.value.failed_ids == ["102"]


def test_requests_carry_token_and_minor_version(
    db_session: Session, settings, client_factory, fake_ledger: FakeLedger
) -> None:
    connect_org(db_session)
    VerificationProbe(db_session, settings=settings, client_factory=client_factory).verify(ORG_ID, ["1"])

    request = fake_ledger.requests[0]
    assert request.url.path == "/v3/company/realm-1/journalentry/1"
    assert request.url.params["minorversion"] == "73"
    assert request.headers["Authorization"] == "Bearer access-token"


def test_disconnected_org_reports_every_id_missing(db_session: Session, settings, client_factory) -> None:
    verifier = VerificationProbe(db_session, settings=settings, client_factory=client_factory)

    results = verifier.verify(ORG_ID, ["1", "2"])

    assert [r.found for r in results] == [False, False]
    assert all("not connected" in (r.error or "") for r in results)


def test_expired_token_counts_as_disconnected(db_session: Session, settings, client_factory) -> None:
    connect_org(db_session, expires_in=-60)
    verifier = VerificationProbe(db_session, settings=settings, client_factory=client_factory)

    assert verifier.verify(ORG_ID, ["1"])[0].found is False


def test_malformed_provider_date_is_reported_not_raised(
    db_session: Session, settings, client_factory, fake_ledger: FakeLedger
) -> None:
    connect_org(db_session)
    _seed_entry(fake_ledger, "103", "31/03/2024")
    verifier = VerificationProbe(db_session, settings=settings, client_factory=client_factory)

    results = verifier.verify(ORG_ID, ["103"])

    assert results[0].found is False
    assert "Invalid transaction date" in results[0].error

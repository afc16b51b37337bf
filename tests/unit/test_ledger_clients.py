from __future__ import annotations

from datetime import date
import json

import httpx
import pytest

from ledgerbridge.core.config import Settings
from ledgerbridge.services.connections import ConnectionHealth
from ledgerbridge.services.errors import ExternalApiError, UnsupportedProviderError
from ledgerbridge.services.ledger_client import (
    JournalEntryDraft,
    JournalLine,
    QuickBooksLedgerClient,
    XeroLedgerClient,
    ledger_client_factory,
    parse_provider_date,
    request_payload,
)

XERO_BASE = "https://xero.test/api.xro/2.0"


def _draft() -> JournalEntryDraft:
    return JournalEntryDraft(
        txn_date=date(2024, 3, 5),
        private_note="LedgerBridge export: ebay 2024-03-05",
        lines=(
            JournalLine("Debit", "clearing", "090", 9400, "Clearing ebay"),
            JournalLine("Debit", "fees_expense", "404", 800, "Platform fees ebay"),
            JournalLine("Credit", "revenue", "200", 10200, "Revenue ebay"),
        ),
    )


def _connection(provider: str = "xero") -> ConnectionHealth:
    return ConnectionHealth(provider=provider, connected=True, realm_id="tenant-1", access_token="token")


def test_xero_client_posts_signed_manual_journal() -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json={"ManualJournals": [{"ManualJournalID": "mj-1"}]})

    with httpx.Client(transport=httpx.MockTransport(handler)) as http_client:
        client = XeroLedgerClient(base_url=XERO_BASE, tenant_id="tenant-1", access_token="token", client=http_client)
        assert client.post_journal_entry(_draft()) == "mj-1"

    request = captured[0]
    assert request.url.path == "/api.xro/2.0/ManualJournals"
    assert request.headers["Xero-tenant-id"] == "tenant-1"
    assert request.headers["Authorization"] == "Bearer token"
    journal = json.loads(request.content)["ManualJournals"][0]
    assert journal["Date"] == "2024-03-05"
    assert [line["LineAmount"] for line in journal["JournalLines"]] == ["94.00", "8.00", "-102.00"]
    assert [line["AccountCode"] for line in journal["JournalLines"]] == ["090", "404", "200"]


def test_xero_client_reads_journal_dates_and_missing_ids() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/mj-1"):
            body = {"ManualJournalID": "mj-1", "Date": "/Date(1709596800000+0000)/", "Narration": "seeded"}
            return httpx.Response(200, json={"ManualJournals": [body]})
        return httpx.Response(404)

    with httpx.Client(transport=httpx.MockTransport(handler)) as http_client:
        client = XeroLedgerClient(base_url=XERO_BASE, tenant_id="tenant-1", access_token="token", client=http_client)
        record = client.get_journal_entry("mj-1")
        missing = client.get_journal_entry("mj-2")

    assert record.txn_date == date(2024, 3, 5)
    assert record.private_note == "seeded"
    assert missing is None


def test_xero_client_lists_accounts_by_code() -> None:
    accounts = [
        {"AccountID": "a-1", "Code": "200", "Name": "Sales", "Type": "REVENUE", "Class": "REVENUE", "Status": "ACTIVE"},
        {"AccountID": "a-2", "Name": "Checking", "Type": "BANK", "Class": "ASSET", "Status": "ARCHIVED"},
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"Accounts": accounts})

    with httpx.Client(transport=httpx.MockTransport(handler)) as http_client:
        client = XeroLedgerClient(base_url=XERO_BASE, tenant_id="tenant-1", access_token="token", client=http_client)
        result = client.list_accounts()

    assert [(a.external_id, a.account_type, a.active) for a in result] == [("200", "REVENUE", True), ("a-2", "BANK", False)]


def test_quickbooks_client_maps_timeouts_to_retryable_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with httpx.Client(transport=httpx.MockTransport(handler)) as http_client:
        client = QuickBooksLedgerClient(
            base_url="https://ledger.test", realm_id="realm-1", access_token="token", client=http_client
        )
        with pytest.raises(ExternalApiError) as excinfo:
            client.post_journal_entry(_draft())

    assert excinfo.value.retryable is True


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("2024-03-05", date(2024, 3, 5)),
        ("2024-03-05T00:00:00", date(2024, 3, 5)),
        ("/Date(1709596800000+0000)/", date(2024, 3, 5)),
        (None, None),
    ],
)
def test_parse_provider_date(value, expected) -> None:
    assert parse_provider_date(value) == expected


def test_parse_provider_date_rejects_garbage() -> None:
    with pytest.raises(ExternalApiError):
        parse_provider_date("05/03/2024")


def test_request_payload_follows_provider() -> None:
    assert "JournalEntry" in request_payload("quickbooks", _draft())
    assert "ManualJournals" in request_payload("xero", _draft())


def test_factory_follows_configured_provider() -> None:
    xero = ledger_client_factory(Settings(ledger_provider="xero", enable_tracing=False))
    quickbooks = ledger_client_factory(Settings(ledger_provider="quickbooks", enable_tracing=False))

    xero_client = xero(_connection("xero"))
    quickbooks_client = quickbooks(_connection("quickbooks"))
    try:
        assert isinstance(xero_client, XeroLedgerClient)
        assert isinstance(quickbooks_client, QuickBooksLedgerClient)
    finally:
        xero_client.close()
        quickbooks_client.close()


def test_factory_rejects_unknown_provider() -> None:
    with pytest.raises(UnsupportedProviderError) as excinfo:
        ledger_client_factory(Settings(ledger_provider="freshbooks", enable_tracing=False))
    assert excinfo.value.provider == "freshbooks"

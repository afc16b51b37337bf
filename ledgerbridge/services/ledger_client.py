"""HTTP clients for the external ledger providers' journal entry and account APIs."""
from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Literal, Protocol

import httpx

from ledgerbridge.core.config import Settings, get_settings
from ledgerbridge.obs import inject_traceparent
from ledgerbridge.services.connections import ConnectionHealth
from ledgerbridge.services.errors import ExternalApiError, NotConnectedError, UnsupportedProviderError
from ledgerbridge.services.money import to_decimal

logger = logging.getLogger(__name__)

PostingType = Literal["Debit", "Credit"]

_ACCOUNT_QUERY = "select * from Account where Active = true"


@dataclass(slots=True, frozen=True)
class JournalLine:
    """One debit or credit against a mapped account, in minor units."""

    posting_type: PostingType
    bucket: str
    account_id: str
    amount_minor: int
    description: str

    def to_json(self, currency: str) -> dict[str, Any]:
        return {
            "Amount": str(to_decimal(self.amount_minor, currency)),
            "Description": self.description,
            "DetailType": "JournalEntryLineDetail",
            "JournalEntryLineDetail": {
                "PostingType": self.posting_type,
                "AccountRef": {"value": self.account_id},
            },
        }

    def reversed(self, suffix: str) -> "JournalLine":
        flipped: PostingType = "Credit" if self.posting_type == "Debit" else "Debit"
        return JournalLine(
            posting_type=flipped,
            bucket=self.bucket,
            account_id=self.account_id,
            amount_minor=self.amount_minor,
            description=f"{self.description}{suffix}",
        )


@dataclass(slots=True, frozen=True)
class JournalEntryDraft:
    """Balanced journal entry ready to be previewed or posted."""

    txn_date: date
    private_note: str
    lines: tuple[JournalLine, ...]
    currency: str = "USD"
    marketplace: str | None = None
    reference: str | None = None

    @property
    def total_debits(self) -> int:
        return sum(line.amount_minor for line in self.lines if line.posting_type == "Debit")

    @property
    def total_credits(self) -> int:
        return sum(line.amount_minor for line in self.lines if line.posting_type == "Credit")

    @property
    def is_balanced(self) -> bool:
        return self.total_debits == self.total_credits

    def to_payload(self) -> dict[str, Any]:
        return {
            "JournalEntry": {
                "TxnDate": self.txn_date.isoformat(),
                "PrivateNote": self.private_note,
                "Line": [line.to_json(self.currency) for line in self.lines],
            }
        }

    def summary(self) -> dict[str, Any]:
        return {
            "txnDate": self.txn_date.isoformat(),
            "privateNote": self.private_note,
            "currency": self.currency,
            "marketplace": self.marketplace,
            "reference": self.reference,
            "totalDebits": self.total_debits,
            "totalCredits": self.total_credits,
            "lines": [
                {
                    "postingType": line.posting_type,
                    "bucket": line.bucket,
                    "accountId": line.account_id,
                    "amountMinor": line.amount_minor,
                    "description": line.description,
                }
                for line in self.lines
            ],
        }


@dataclass(slots=True, frozen=True)
class JournalEntryRecord:
    """Journal entry as reported back by the provider."""

    id: str
    txn_date: date | None
    private_note: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(slots=True, frozen=True)
class ExternalAccountInfo:
    """Chart-of-accounts entry returned by the provider."""

    external_id: str
    name: str | None
    account_type: str | None
    account_subtype: str | None
    active: bool = True


class LedgerClient(Protocol):
    """Subset of the provider API used for posting, verification and account lookup."""

    def post_journal_entry(self, entry: JournalEntryDraft) -> str:
        """Create the journal entry and return the provider's id for it."""

    def get_journal_entry(self, entry_id: str) -> JournalEntryRecord | None:
        """Return the entry, or ``None`` when the provider does not know the id."""

    def list_accounts(self) -> list[ExternalAccountInfo]:
        """Return the active chart of accounts."""

    def close(self) -> None:
        """Release any pooled connections."""


LedgerClientFactory = Callable[[ConnectionHealth], LedgerClient]


_XERO_DATE = re.compile(r"^/Date\((-?\d+)([+-]\d{4})?\)/$")


def parse_provider_date(value: Any) -> date | None:
    """Parse a provider transaction date.

    Accepts ISO dates and timestamps as well as the ``/Date(1709596800000+0000)/``
    form Xero returns. Anything else is reported as a provider error.
    """

    if value in (None, ""):
        return None
    text = str(value).strip()
    match = _XERO_DATE.match(text)
    try:
        if match:
            return datetime.fromtimestamp(int(match.group(1)) / 1000, tz=timezone.utc).date()
        return date.fromisoformat(text[:10])
    except (ValueError, OverflowError, OSError) as exc:
        raise ExternalApiError(f"Invalid transaction date from ledger provider: {text!r}") from exc


def xero_manual_journal(entry: JournalEntryDraft) -> dict[str, Any]:
    """Render a draft as a Xero manual journal; debits are positive, credits negative."""

    lines = []
    for line in entry.lines:
        amount = to_decimal(line.amount_minor, entry.currency)
        lines.append(
            {
                "LineAmount": str(amount if line.posting_type == "Debit" else -amount),
                "AccountCode": line.account_id,
                "Description": line.description,
                "TaxType": "NONE",
            }
        )
    return {
        "ManualJournals": [
            {
                "Date": entry.txn_date.isoformat(),
                "Narration": entry.private_note or "LedgerBridge export",
                "Status": "POSTED",
                "LineAmountTypes": "NoTax",
                "JournalLines": lines,
            }
        ]
    }


def request_payload(provider: str, entry: JournalEntryDraft) -> dict[str, Any]:
    """Return the body ``provider`` receives for ``entry``, as stored on export rows."""
    if provider == "xero":
        return xero_manual_journal(entry)
    return entry.to_payload()


class _HttpLedgerClient:
    """Shared request, error and JSON handling for the HTTP ledger clients."""

    def __init__(
        self,
        *,
        base_url: str,
        access_token: str,
        timeout_seconds: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._access_token = access_token
        self._timeout = timeout_seconds
        self._client = client or httpx.Client()
        self._owns_client = client is None

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self):  # pragma: no cover - convenience
        return self

    def __exit__(self, *_args: object) -> None:  # pragma: no cover - convenience
        self.close()

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._access_token}", "Accept": "application/json"}

    def _params(self, params: dict[str, Any] | None) -> dict[str, Any]:
        return dict(params or {})

    def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        allow_not_found: bool = False,
    ) -> httpx.Response | None:
        try:
            response = self._client.request(
                method,
                f"{self._base_url}{path}",
                json=json,
                params=self._params(params),
                headers=inject_traceparent(self._headers()),
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            raise ExternalApiError("Ledger provider call timed out", retryable=True) from exc
        except httpx.HTTPError as exc:
            raise ExternalApiError(f"Ledger provider unreachable: {exc}", retryable=True) from exc

        if allow_not_found and response.status_code == 404:
            return None
        if response.status_code >= 400:
            logger.warning(
                "ledger provider rejected request",
                extra={"method": method, "path": path, "status": response.status_code},
            )
            raise ExternalApiError.from_status(response.status_code, response.text[:500])
        return response

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise ExternalApiError("Invalid ledger provider response") from exc
        if not isinstance(payload, dict):
            raise ExternalApiError("Invalid ledger provider response")
        return payload


class QuickBooksLedgerClient(_HttpLedgerClient):
    """Synchronous wrapper around the QuickBooks Online accounting API."""

    def __init__(
        self,
        *,
        base_url: str,
        realm_id: str,
        access_token: str,
        minor_version: int = 73,
        timeout_seconds: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        super().__init__(
            base_url=f"{base_url.rstrip('/')}/v3/company/{realm_id}",
            access_token=access_token,
            timeout_seconds=timeout_seconds,
            client=client,
        )
        self._minor_version = minor_version

    def _params(self, params: dict[str, Any] | None) -> dict[str, Any]:
        return {"minorversion": self._minor_version, **(params or {})}

    def post_journal_entry(self, entry: JournalEntryDraft) -> str:
        response = self._request("POST", "/journalentry", json=entry.to_payload())
        payload = self._json(response)
        entry_id = (payload.get("JournalEntry") or {}).get("Id")
        if not entry_id:
            raise ExternalApiError("Ledger provider response did not include a journal entry id")
        return str(entry_id)

    def get_journal_entry(self, entry_id: str) -> JournalEntryRecord | None:
        response = self._request("GET", f"/journalentry/{entry_id}", allow_not_found=True)
        if response is None:
            return None
        body = self._json(response).get("JournalEntry") or {}
        return JournalEntryRecord(
            id=str(body.get("Id") or entry_id),
            txn_date=parse_provider_date(body.get("TxnDate")),
            private_note=body.get("PrivateNote"),
            raw=body,
        )

    def list_accounts(self) -> list[ExternalAccountInfo]:
        response = self._request("GET", "/query", params={"query": _ACCOUNT_QUERY})
        rows = (self._json(response).get("QueryResponse") or {}).get("Account") or []
        return [
            ExternalAccountInfo(
                external_id=str(row["Id"]),
                name=row.get("Name"),
                account_type=row.get("AccountType"),
                account_subtype=row.get("AccountSubType"),
                active=bool(row.get("Active", True)),
            )
            for row in rows
            if row.get("Id") is not None
        ]


class XeroLedgerClient(_HttpLedgerClient):
    """Manual journals and chart of accounts through the Xero accounting API.

    Journal lines reference accounts by code, so the account cache is keyed by
    ``Code`` and falls back to ``AccountID`` for accounts without one.
    """

    def __init__(
        self,
        *,
        base_url: str,
        tenant_id: str,
        access_token: str,
        timeout_seconds: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        super().__init__(
            base_url=base_url, access_token=access_token, timeout_seconds=timeout_seconds, client=client
        )
        self._tenant_id = tenant_id

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        headers["Xero-tenant-id"] = self._tenant_id
        return headers

    def post_journal_entry(self, entry: JournalEntryDraft) -> str:
        response = self._request("POST", "/ManualJournals", json=xero_manual_journal(entry))
        journals = self._json(response).get("ManualJournals") or [{}]
        entry_id = journals[0].get("ManualJournalID")
        if not entry_id:
            raise ExternalApiError("Ledger provider response did not include a journal entry id")
        return str(entry_id)

    def get_journal_entry(self, entry_id: str) -> JournalEntryRecord | None:
        response = self._request("GET", f"/ManualJournals/{entry_id}", allow_not_found=True)
        if response is None:
            return None
        journals = self._json(response).get("ManualJournals") or []
        if not journals:
            return None
        body = journals[0]
        return JournalEntryRecord(
            id=str(body.get("ManualJournalID") or entry_id),
            txn_date=parse_provider_date(body.get("Date")),
            private_note=body.get("Narration"),
            raw=body,
        )

    def list_accounts(self) -> list[ExternalAccountInfo]:
        response = self._request("GET", "/Accounts")
        rows = self._json(response).get("Accounts") or []
        accounts: list[ExternalAccountInfo] = []
        for row in rows:
            external_id = row.get("Code") or row.get("AccountID")
            if not external_id:
                continue
            accounts.append(
                ExternalAccountInfo(
                    external_id=str(external_id),
                    name=row.get("Name"),
                    account_type=row.get("Type"),
                    account_subtype=row.get("Class"),
                    active=row.get("Status", "ACTIVE") == "ACTIVE",
                )
            )
        return accounts


def _require_credential(connection: ConnectionHealth) -> tuple[str, str]:
    if not connection.connected or not connection.access_token or not connection.realm_id:
        raise NotConnectedError(f"No usable {connection.provider} credential")
    return connection.access_token, connection.realm_id


def quickbooks_client_factory(
    settings: Settings | None = None, *, http_client: httpx.Client | None = None
) -> LedgerClientFactory:
    """Return a factory building a client from an organization's live connection."""

    resolved = settings or get_settings()

    def factory(connection: ConnectionHealth) -> LedgerClient:
        access_token, realm_id = _require_credential(connection)
        return QuickBooksLedgerClient(
            base_url=resolved.ledger_api_base_url,
            realm_id=realm_id,
            access_token=access_token,
            minor_version=resolved.ledger_minor_version,
            timeout_seconds=resolved.ledger_timeout_seconds,
            client=http_client,
        )

    return factory


def xero_client_factory(
    settings: Settings | None = None, *, http_client: httpx.Client | None = None
) -> LedgerClientFactory:
    """Like :func:`quickbooks_client_factory`; the stored realm id holds the Xero tenant id."""

    resolved = settings or get_settings()

    def factory(connection: ConnectionHealth) -> LedgerClient:
        access_token, tenant_id = _require_credential(connection)
        return XeroLedgerClient(
            base_url=resolved.xero_api_base_url,
            tenant_id=tenant_id,
            access_token=access_token,
            timeout_seconds=resolved.ledger_timeout_seconds,
            client=http_client,
        )

    return factory


_FACTORIES: dict[str, Callable[..., LedgerClientFactory]] = {
    "quickbooks": quickbooks_client_factory,
    "xero": xero_client_factory,
}


def ledger_client_factory(
    settings: Settings | None = None, *, http_client: httpx.Client | None = None
) -> LedgerClientFactory:
    """Return the client factory for ``settings.ledger_provider``."""

    resolved = settings or get_settings()
    try:
        builder = _FACTORIES[resolved.ledger_provider]
    except KeyError:
        raise UnsupportedProviderError(resolved.ledger_provider) from None
    return builder(resolved, http_client=http_client)


__all__ = [
    "ExternalAccountInfo",
    "JournalEntryDraft",
    "JournalEntryRecord",
    "JournalLine",
    "LedgerClient",
    "LedgerClientFactory",
    "PostingType",
    "QuickBooksLedgerClient",
    "XeroLedgerClient",
    "ledger_client_factory",
    "parse_provider_date",
    "quickbooks_client_factory",
    "request_payload",
    "xero_client_factory",
    "xero_manual_journal",
]

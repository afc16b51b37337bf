"""Mapping of logical accounting buckets onto the provider's chart of accounts."""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledgerbridge.models import AccountMapping, ExternalAccount
from ledgerbridge.services.connections import require_organization
from ledgerbridge.services.errors import ValidationError

if TYPE_CHECKING:  # pragma: no cover
    from ledgerbridge.services.ledger_client import LedgerClient

logger = logging.getLogger(__name__)

REQUIRED_BUCKETS: tuple[str, ...] = (
    "revenue",
    "shipping_income",
    "fees_expense",
    "refunds_contra",
    "chargebacks_expense",
    "shipping_cost",
    "sales_tax_liability",
    "clearing",
)

OPTIONAL_BUCKETS: tuple[str, ...] = ("cogs", "inventory_asset", "operating_expense")

ALL_BUCKETS: tuple[str, ...] = REQUIRED_BUCKETS + OPTIONAL_BUCKETS

# QuickBooks account types followed by Xero account types.
RECOMMENDED_TYPES: dict[str, tuple[str, ...]] = {
    "revenue": ("Income", "Other Income", "REVENUE", "SALES", "OTHERINCOME"),
    "shipping_income": ("Income", "Other Income", "REVENUE", "SALES", "OTHERINCOME"),
    "fees_expense": ("Expense", "Other Expense", "EXPENSE", "OVERHEADS", "DIRECTCOSTS"),
    "refunds_contra": ("Income", "Other Income", "REVENUE", "SALES"),
    "chargebacks_expense": ("Expense", "Other Expense", "EXPENSE", "OVERHEADS"),
    "shipping_cost": ("Expense", "Cost of Goods Sold", "Other Expense", "EXPENSE", "DIRECTCOSTS"),
    "sales_tax_liability": ("Other Current Liability", "Long Term Liability", "CURRLIAB", "LIABILITY"),
    "clearing": ("Bank", "Other Current Asset", "BANK", "CURRENT"),
    "cogs": ("Cost of Goods Sold", "DIRECTCOSTS"),
    "inventory_asset": ("Other Current Asset", "INVENTORY", "CURRENT"),
    "operating_expense": ("Expense", "Other Expense", "EXPENSE", "OVERHEADS"),
}


class AccountInfo(Protocol):
    """Anything carrying the provider-reported classification of an account."""

    name: str | None
    account_type: str | None
    account_subtype: str | None


def missing_buckets(mappings: Mapping[str, object] | Iterable[str]) -> list[str]:
    """Return unmapped required buckets in their canonical order."""
    mapped = set(mappings)
    return [bucket for bucket in REQUIRED_BUCKETS if bucket not in mapped]


def is_recommended_type(bucket: str, account: AccountInfo | None) -> bool:
    """Return ``False`` only when the account's reported type is known and not allowed.

    An account missing from the cache or without a type produces no warning.
    """

    if account is None or not account.account_type:
        return True
    allowed = RECOMMENDED_TYPES.get(bucket)
    if not allowed:
        return True
    return account.account_type in allowed or account.account_subtype in allowed


def type_warnings(
    mappings: Mapping[str, AccountMapping], accounts: Mapping[str, AccountInfo]
) -> list[str]:
    """Describe each mapped bucket whose account type is not recommended."""

    warnings: list[str] = []
    for bucket in ALL_BUCKETS:
        mapping = mappings.get(bucket)
        if mapping is None:
            continue
        account = accounts.get(mapping.external_account_id)
        if account is not None and not is_recommended_type(bucket, account):
            warnings.append(f"{bucket} → {account.name} ({account.account_type})")
    return warnings


class AccountMappingService:
    """Reads and writes bucket mappings and the per-organization account cache."""

    def __init__(self, session: Session, *, provider: str = "quickbooks") -> None:
        self._session = session
        self._provider = provider

    def save_mapping(
        self, org_id: str, bucket: str, external_account_id: str, name: str | None = None
    ) -> AccountMapping:
        if bucket not in ALL_BUCKETS:
            raise ValidationError(f"Unknown bucket '{bucket}'")
        if not external_account_id:
            raise ValidationError("externalAccountId is required")
        require_organization(self._session, org_id)

        mapping = self._session.scalar(
            select(AccountMapping).where(
                AccountMapping.org_id == org_id,
                AccountMapping.provider == self._provider,
                AccountMapping.bucket == bucket,
            )
        )
        if name is None:
            cached = self._cached_account(org_id, external_account_id)
            name = cached.name if cached is not None else None
        if mapping is None:
            mapping = AccountMapping(
                org_id=org_id,
                provider=self._provider,
                bucket=bucket,
                external_account_id=external_account_id,
                name=name,
            )
            self._session.add(mapping)
        else:
            mapping.external_account_id = external_account_id
            mapping.name = name
        self._session.commit()
        self._session.refresh(mapping)
        logger.info(
            "saved account mapping",
            extra={"org_id": org_id, "provider": self._provider, "bucket": bucket},
        )
        return mapping

    def list_mappings(self, org_id: str) -> list[AccountMapping]:
        statement = (
            select(AccountMapping)
            .where(AccountMapping.org_id == org_id, AccountMapping.provider == self._provider)
            .order_by(AccountMapping.bucket)
        )
        return list(self._session.scalars(statement))

    def mapping_by_bucket(self, org_id: str) -> dict[str, AccountMapping]:
        return {mapping.bucket: mapping for mapping in self.list_mappings(org_id)}

    def cached_accounts(self, org_id: str) -> dict[str, ExternalAccount]:
        """Return the cached chart of accounts keyed by external id."""
        statement = select(ExternalAccount).where(
            ExternalAccount.org_id == org_id, ExternalAccount.provider == self._provider
        )
        return {account.external_id: account for account in self._session.scalars(statement)}

    def _cached_account(self, org_id: str, external_id: str) -> ExternalAccount | None:
        return self._session.scalar(
            select(ExternalAccount).where(
                ExternalAccount.org_id == org_id,
                ExternalAccount.provider == self._provider,
                ExternalAccount.external_id == external_id,
            )
        )

    def refresh_account_cache(self, org_id: str, client: "LedgerClient") -> int:
        """Replace the organization's cached accounts with the provider's current list.

        Accounts the provider no longer returns are kept but marked inactive.
        """

        require_organization(self._session, org_id)
        accounts = client.list_accounts()
        existing = self.cached_accounts(org_id)
        now = datetime.now(timezone.utc)
        seen: set[str] = set()
        for info in accounts:
            seen.add(info.external_id)
            cached = existing.get(info.external_id)
            if cached is None:
                cached = ExternalAccount(org_id=org_id, provider=self._provider, external_id=info.external_id)
                self._session.add(cached)
                existing[info.external_id] = cached
            cached.name = info.name
            cached.account_type = info.account_type
            cached.account_subtype = info.account_subtype
            cached.active = info.active
            cached.refreshed_at = now
        for external_id, cached in existing.items():
            if external_id not in seen:
                cached.active = False
                cached.refreshed_at = now
        self._session.commit()
        logger.info(
            "refreshed account cache",
            extra={"org_id": org_id, "provider": self._provider, "count": len(seen)},
        )
        return len(seen)


__all__ = [
    "ALL_BUCKETS",
    "AccountInfo",
    "AccountMappingService",
    "OPTIONAL_BUCKETS",
    "RECOMMENDED_TYPES",
    "REQUIRED_BUCKETS",
    "is_recommended_type",
    "missing_buckets",
    "type_warnings",
]

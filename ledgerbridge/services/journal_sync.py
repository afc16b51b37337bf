"""Journal entry construction, posting and the self-reversing test posting."""
from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Literal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledgerbridge.core.config import Settings, get_settings
from ledgerbridge.models import (
    AccountMapping,
    AuditLog,
    Expense,
    JournalExport,
    JournalExportKind,
    JournalExportStatus,
    Sale,
)
from ledgerbridge.obs import LEDGER_POSTINGS_COUNTER
from ledgerbridge.services.bucket_map import AccountMappingService, missing_buckets
from ledgerbridge.services.cogs import period_bounds
from ledgerbridge.services.connections import as_utc, require_connection, require_organization
from ledgerbridge.services.errors import (
    ExternalApiError,
    MappingIncompleteError,
    PartialSequenceError,
    ValidationError,
)
from ledgerbridge.services.ingest import idempotency_key
from ledgerbridge.services.ledger_client import (
    JournalEntryDraft,
    JournalLine,
    LedgerClient,
    LedgerClientFactory,
    PostingType,
    ledger_client_factory,
    request_payload,
)

logger = logging.getLogger(__name__)

JournalMode = Literal["summarized", "per_order"]

_REVERSE_SUFFIX = " (AUTO-REVERSE)"

# Buckets touched by the test posting, one minor unit each.
_TEST_CREDITS: tuple[tuple[str, str], ...] = (
    ("revenue", "TEST: revenue"),
    ("shipping_income", "TEST: shipping income"),
    ("sales_tax_liability", "TEST: sales tax"),
)
_TEST_DEBITS: tuple[tuple[str, str], ...] = (
    ("fees_expense", "TEST: fees"),
    ("refunds_contra", "TEST: refunds contra"),
    ("shipping_cost", "TEST: shipping cost"),
)


@dataclass(slots=True, frozen=True)
class JournalPreview:
    """Drafts for a period plus whatever still blocks committing them."""

    org_id: str
    provider: str
    period_start: date
    period_end: date
    mode: JournalMode
    drafts: list[JournalEntryDraft]
    missing: list[str]


@dataclass(slots=True, frozen=True)
class JournalCommitResult:
    export_id: str
    status: str
    txn_date: date
    external_id: str | None = None
    error: str | None = None


@dataclass(slots=True, frozen=True)
class ReversingTestResult:
    export_id: str
    forward_id: str
    reverse_id: str
    txn_date: date
    reverse_date: date


@dataclass(slots=True)
class _LineBuilder:
    """Accumulates bucket amounts and emits balanced lines."""

    accounts: dict[str, str]
    label: str
    credits: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    debits: dict[str, int] = field(default_factory=lambda: defaultdict(int))

    def credit(self, bucket: str, amount: int) -> None:
        self.credits[bucket] += int(amount or 0)

    def debit(self, bucket: str, amount: int) -> None:
        self.debits[bucket] += int(amount or 0)

    def lines(self) -> tuple[JournalLine, ...]:
        built: list[JournalLine] = []
        for bucket, amount in self.credits.items():
            self._append(built, "Credit", bucket, amount)
        for bucket, amount in self.debits.items():
            self._append(built, "Debit", bucket, amount)
        delta = sum(line.amount_minor for line in built if line.posting_type == "Credit") - sum(
            line.amount_minor for line in built if line.posting_type == "Debit"
        )
        self._append(built, "Debit", "clearing", delta)
        return tuple(built)

    def _append(self, built: list[JournalLine], posting_type: PostingType, bucket: str, amount: int) -> None:
        if amount == 0:
            return
        if amount < 0:
            posting_type = "Credit" if posting_type == "Debit" else "Debit"
            amount = -amount
        built.append(
            JournalLine(
                posting_type=posting_type,
                bucket=bucket,
                account_id=self.accounts.get(bucket, ""),
                amount_minor=amount,
                description=f"{self.label}: {bucket.replace('_', ' ')}",
            )
        )


def draft_fingerprint(draft: JournalEntryDraft) -> str:
    return idempotency_key([draft.currency, draft.to_payload()])


class JournalSyncService:
    """Builds balanced journal entries for a period and posts them to the ledger provider."""

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
        self._mappings = AccountMappingService(session, provider=self._provider)

    def build_journals(
        self,
        org_id: str,
        period_start: date,
        period_end: date,
        mode: JournalMode = "summarized",
    ) -> list[JournalEntryDraft]:
        if mode not in ("summarized", "per_order"):
            raise ValidationError(f"Unknown journal mode '{mode}'")
        start, end = period_bounds(period_start, period_end)
        mappings = self._mappings.mapping_by_bucket(org_id)
        accounts = {bucket: mapping.external_account_id for bucket, mapping in mappings.items()}
        book_cogs = "cogs" in mappings and "inventory_asset" in mappings

        sales = self._session.scalars(
            select(Sale)
            .where(Sale.org_id == org_id, Sale.sold_at >= start, Sale.sold_at < end)
            .order_by(Sale.sold_at, Sale.id)
        ).all()
        groups: dict[tuple[Any, ...], list[Sale]] = defaultdict(list)
        for sale in sales:
            day = as_utc(sale.sold_at).date()
            if mode == "per_order":
                key: tuple[Any, ...] = (day, sale.marketplace, sale.currency, sale.id)
            else:
                key = (day, sale.marketplace, sale.currency)
            groups[key].append(sale)

        drafts = [
            self._sales_draft(key, group, accounts, book_cogs, mode)
            for key, group in groups.items()
        ]
        if "operating_expense" in mappings:
            drafts.extend(self._expense_drafts(org_id, start, end, accounts))
        drafts = [draft for draft in drafts if draft.lines]
        for draft in drafts:
            if not draft.is_balanced:  # pragma: no cover - the clearing line guarantees balance
                raise ValidationError(f"Unbalanced journal for {draft.txn_date}")
        return drafts

    def _sales_draft(
        self,
        key: tuple[Any, ...],
        sales: Sequence[Sale],
        accounts: dict[str, str],
        book_cogs: bool,
        mode: JournalMode,
    ) -> JournalEntryDraft:
        day, marketplace, currency = key[0], key[1], key[2]
        if mode == "per_order":
            order = sales[0].marketplace_order_id or sales[0].id
            label = f"{marketplace} order {order}"
        else:
            order = None
            label = f"{marketplace} sales {day.isoformat()}"
        builder = _LineBuilder(accounts=accounts, label=label)
        for sale in sales:
            builder.credit("revenue", sale.sale_price_cents)
            builder.credit("shipping_income", sale.shipping_charged_cents)
            if not sale.tax_remitted_by_marketplace:
                builder.credit("sales_tax_liability", sale.tax_collected_cents)
            builder.debit("fees_expense", sale.platform_fees_cents)
            builder.debit("refunds_contra", sale.refunds_cents + sale.discounts_cents)
            builder.debit("chargebacks_expense", sale.chargebacks_cents)
            builder.debit("shipping_cost", sale.shipping_cost_cents)
            if book_cogs:
                cogs = sale.locked_cogs_cents or sale.purchase_price_cents
                builder.debit("cogs", cogs)
                builder.credit("inventory_asset", cogs)
        return JournalEntryDraft(
            txn_date=day,
            private_note=f"LedgerBridge export: {label}",
            lines=builder.lines(),
            currency=currency,
            marketplace=marketplace,
            reference=order,
        )

    def _expense_drafts(
        self, org_id: str, start: datetime, end: datetime, accounts: dict[str, str]
    ) -> list[JournalEntryDraft]:
        expenses = self._session.scalars(
            select(Expense)
            .where(Expense.org_id == org_id, Expense.occurred_at >= start, Expense.occurred_at < end)
            .order_by(Expense.occurred_at, Expense.id)
        ).all()
        grouped: dict[tuple[date, str], list[Expense]] = defaultdict(list)
        for expense in expenses:
            grouped[(as_utc(expense.occurred_at).date(), expense.currency)].append(expense)
        drafts: list[JournalEntryDraft] = []
        for (day, currency), group in grouped.items():
            label = f"expenses {day.isoformat()}"
            builder = _LineBuilder(accounts=accounts, label=label)
            for expense in group:
                builder.debit("operating_expense", expense.amount_cents)
            drafts.append(
                JournalEntryDraft(
                    txn_date=day,
                    private_note=f"LedgerBridge export: {label}",
                    lines=builder.lines(),
                    currency=currency,
                )
            )
        return drafts

    def preview(
        self,
        org_id: str,
        period_start: date,
        period_end: date,
        mode: JournalMode = "summarized",
    ) -> JournalPreview:
        """Build the drafts without contacting the provider or persisting anything."""

        require_organization(self._session, org_id)
        drafts = self.build_journals(org_id, period_start, period_end, mode)
        return JournalPreview(
            org_id=org_id,
            provider=self._provider,
            period_start=period_start,
            period_end=period_end,
            mode=mode,
            drafts=drafts,
            missing=missing_buckets(self._mappings.mapping_by_bucket(org_id)),
        )

    def commit(
        self,
        org_id: str,
        period_start: date,
        period_end: date,
        mode: JournalMode = "summarized",
    ) -> list[JournalCommitResult]:
        """Post every draft for the period, recording one export row per draft.

        Each export row is committed with status ``preview`` before its provider
        call. Drafts whose identical payload is already committed, or still
        unresolved from an earlier attempt, are skipped.
        """

        require_organization(self._session, org_id)
        connection = require_connection(self._session, org_id, self._provider)
        missing = missing_buckets(self._mappings.mapping_by_bucket(org_id))
        if missing:
            raise MappingIncompleteError(missing)

        drafts = self.build_journals(org_id, period_start, period_end, mode)
        results: list[JournalCommitResult] = []
        if not drafts:
            return results

        client = self._client_factory(connection)
        try:
            for draft in drafts:
                results.append(self._commit_draft(org_id, period_start, period_end, draft, client))
        finally:
            client.close()
        return results

    def _commit_draft(
        self,
        org_id: str,
        period_start: date,
        period_end: date,
        draft: JournalEntryDraft,
        client: LedgerClient,
    ) -> JournalCommitResult:
        fingerprint = draft_fingerprint(draft)
        previous = self._live_export(org_id, fingerprint)
        if previous is not None:
            return self._skip_live_export(org_id, draft, previous)

        export = JournalExport(
            org_id=org_id,
            provider=self._provider,
            kind=JournalExportKind.JOURNAL,
            period_start=period_start,
            period_end=period_end,
            status=JournalExportStatus.PREVIEW,
            preview=draft.summary(),
            fingerprint=fingerprint,
        )
        self._session.add(export)
        try:
            self._session.commit()
        except IntegrityError:
            # A concurrent commit claimed the same payload between lookup and insert.
            self._session.rollback()
            previous = self._live_export(org_id, fingerprint)
            if previous is None:
                raise
            return self._skip_live_export(org_id, draft, previous)
        self._session.refresh(export)

        body = request_payload(self._provider, draft)
        try:
            external_id = client.post_journal_entry(draft)
        except ExternalApiError as exc:
            export.status = JournalExportStatus.ERROR
            export.payload = {"request": body}
            export.error = str(exc)
            self._record_audit(
                org_id, export, {"status": "error", "error": str(exc), "retryable": exc.retryable}
            )
            self._session.commit()
            self._count("journal", "error")
            logger.warning(
                "journal posting failed",
                extra={"org_id": org_id, "export_id": export.id, "error": str(exc)},
            )
            return JournalCommitResult(
                export_id=export.id, status="error", txn_date=draft.txn_date, error=str(exc)
            )

        export.status = JournalExportStatus.COMMITTED
        export.external_id = external_id
        export.payload = {"request": body, "response": {"id": external_id}}
        self._record_audit(org_id, export, {"status": "committed", "external_id": external_id})
        self._session.commit()
        self._count("journal", "committed")
        logger.info(
            "journal committed",
            extra={"org_id": org_id, "export_id": export.id, "external_id": external_id},
        )
        return JournalCommitResult(
            export_id=export.id, status="committed", txn_date=draft.txn_date, external_id=external_id
        )

    def _live_export(self, org_id: str, fingerprint: str) -> JournalExport | None:
        """Return the committed or still unresolved export carrying ``fingerprint``."""
        return self._session.scalar(
            select(JournalExport).where(
                JournalExport.org_id == org_id,
                JournalExport.provider == self._provider,
                JournalExport.fingerprint == fingerprint,
                JournalExport.status != JournalExportStatus.ERROR,
            )
        )

    def _skip_live_export(
        self, org_id: str, draft: JournalEntryDraft, previous: JournalExport
    ) -> JournalCommitResult:
        # A ``preview`` row may already be posted at the provider; it needs verifying, never a re-post.
        if previous.status == JournalExportStatus.COMMITTED:
            status, message = "already_committed", "journal already committed"
        else:
            status, message = "in_flight", "journal export unresolved, not reposting"
        log = logger.info if status == "already_committed" else logger.warning
        log(message, extra={"org_id": org_id, "export_id": previous.id, "external_id": previous.external_id})
        return JournalCommitResult(
            export_id=previous.id,
            status=status,
            txn_date=draft.txn_date,
            external_id=previous.external_id,
        )

    def run_reversing_test(
        self,
        org_id: str,
        *,
        same_day_reverse: bool = False,
        note: str | None = None,
        today: date | None = None,
    ) -> ReversingTestResult:
        """Post a tiny forward entry and its mirror image as a connectivity check.

        The two calls are not atomic. When the reverse call fails the forward id
        is stored on the export row and carried by ``PartialSequenceError`` so the
        entry can be reversed by hand.
        """

        require_organization(self._session, org_id)
        connection = require_connection(self._session, org_id, self._provider)
        mappings = self._mappings.mapping_by_bucket(org_id)
        missing = missing_buckets(mappings)
        if missing:
            raise MappingIncompleteError(missing)

        txn_date = today or datetime.now(timezone.utc).date()
        reverse_date = txn_date if same_day_reverse else txn_date + timedelta(days=1)
        timing = "(same day)" if same_day_reverse else "(next day)"
        private_note = note or f"{self._settings.test_posting_note} {timing}"
        forward = self._test_draft(mappings, txn_date, private_note)

        export = JournalExport(
            org_id=org_id,
            provider=self._provider,
            kind=JournalExportKind.REVERSING_TEST,
            period_start=txn_date,
            period_end=reverse_date,
            status=JournalExportStatus.PREVIEW,
            preview={"forward": forward.summary(), "sameDayReverse": same_day_reverse},
        )
        self._session.add(export)
        self._session.commit()
        self._session.refresh(export)

        client = self._client_factory(connection)
        try:
            forward_id = self._post_forward(org_id, export, client, forward)
            reverse = JournalEntryDraft(
                txn_date=reverse_date,
                private_note=f"{private_note} - REVERSE of #{forward_id}",
                lines=tuple(line.reversed(_REVERSE_SUFFIX) for line in forward.lines),
                currency=forward.currency,
            )
            try:
                reverse_id = client.post_journal_entry(reverse)
            except ExternalApiError as exc:
                export.status = JournalExportStatus.ERROR
                export.payload = {"forwardId": forward_id, "reverseId": None, "autoReverse": True}
                export.error = f"Reverse posting failed: {exc}"
                self._record_audit(
                    org_id,
                    export,
                    {"status": "partial", "forward_id": forward_id, "error": str(exc)},
                    action="journal.test_reverse",
                )
                self._session.commit()
                self._count("reversing_test", "partial")
                logger.error(
                    "reverse test posting failed; forward entry needs manual reversal",
                    extra={"org_id": org_id, "export_id": export.id, "forward_id": forward_id},
                )
                raise PartialSequenceError(
                    forward_id=forward_id, txn_date=txn_date, reverse_date=reverse_date, reason=str(exc)
                ) from exc
        finally:
            client.close()

        export.status = JournalExportStatus.COMMITTED
        export.payload = {"forwardId": forward_id, "reverseId": reverse_id, "autoReverse": True}
        self._record_audit(
            org_id,
            export,
            {"status": "committed", "forward_id": forward_id, "reverse_id": reverse_id},
            action="journal.test_reverse",
        )
        self._session.commit()
        self._count("reversing_test", "committed")
        logger.info(
            "reversing test posted",
            extra={"org_id": org_id, "forward_id": forward_id, "reverse_id": reverse_id},
        )
        return ReversingTestResult(
            export_id=export.id,
            forward_id=forward_id,
            reverse_id=reverse_id,
            txn_date=txn_date,
            reverse_date=reverse_date,
        )

    def _post_forward(
        self, org_id: str, export: JournalExport, client: LedgerClient, forward: JournalEntryDraft
    ) -> str:
        try:
            forward_id = client.post_journal_entry(forward)
        except ExternalApiError as exc:
            export.status = JournalExportStatus.ERROR
            export.error = f"Forward posting failed: {exc}"
            self._record_audit(
                org_id, export, {"status": "error", "error": str(exc)}, action="journal.test_reverse"
            )
            self._session.commit()
            self._count("reversing_test", "error")
            raise
        export.external_id = forward_id
        export.payload = {"forwardId": forward_id, "reverseId": None, "autoReverse": True}
        self._session.commit()
        return forward_id

    def _test_draft(
        self, mappings: dict[str, AccountMapping], txn_date: date, private_note: str
    ) -> JournalEntryDraft:
        amount = self._settings.test_posting_amount_minor
        lines: list[JournalLine] = []
        lines.extend(self._test_lines("Credit", _TEST_CREDITS, mappings, amount))
        lines.extend(self._test_lines("Debit", _TEST_DEBITS, mappings, amount))
        delta = amount * len(_TEST_CREDITS) - amount * len(_TEST_DEBITS)
        if delta:
            lines.append(
                JournalLine(
                    posting_type="Debit" if delta > 0 else "Credit",
                    bucket="clearing",
                    account_id=mappings["clearing"].external_account_id,
                    amount_minor=abs(delta),
                    description="TEST: clearing balance",
                )
            )
        return JournalEntryDraft(
            txn_date=txn_date,
            private_note=private_note,
            lines=tuple(lines),
            currency=self._settings.default_currency,
        )

    @staticmethod
    def _test_lines(
        posting_type: PostingType,
        buckets: Iterable[tuple[str, str]],
        mappings: dict[str, AccountMapping],
        amount: int,
    ) -> list[JournalLine]:
        return [
            JournalLine(
                posting_type=posting_type,
                bucket=bucket,
                account_id=mappings[bucket].external_account_id,
                amount_minor=amount,
                description=description,
            )
            for bucket, description in buckets
        ]

    def _count(self, kind: str, outcome: str) -> None:
        LEDGER_POSTINGS_COUNTER.labels(provider=self._provider, kind=kind, outcome=outcome).inc()

    def _record_audit(
        self,
        org_id: str,
        export: JournalExport,
        payload: dict[str, Any],
        *,
        action: str = "journal.commit",
    ) -> None:
        self._session.add(
            AuditLog(
                org_id=org_id,
                action=action,
                resource_type="JournalExport",
                resource_id=export.id,
                payload={"provider": self._provider, **payload},
            )
        )


__all__ = [
    "JournalCommitResult",
    "JournalMode",
    "JournalPreview",
    "JournalSyncService",
    "ReversingTestResult",
    "draft_fingerprint",
]

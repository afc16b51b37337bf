"""Idempotent import of marketplace sales and expense rows."""
from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from dateutil import parser as date_parser
from jsonschema import Draft202012Validator
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ledgerbridge.models import Expense, Sale
from ledgerbridge.obs import record_ingest_row
from ledgerbridge.services.connections import require_organization
from ledgerbridge.services.errors import DuplicateTransactionError, ValidationError
from ledgerbridge.services.money import parse_money

logger = logging.getLogger(__name__)

# Canonical key followed by the export headers seen for it, in priority order.
SALE_ALIASES: dict[str, tuple[str, ...]] = {
    "marketplace": ("marketplace", "Marketplace", "platform"),
    "marketplaceOrderId": ("marketplaceOrderId", "orderId", "Order ID"),
    "soldAt": ("soldAt", "date", "Sold At"),
    "title": ("title", "Item Title"),
    "sku": ("sku", "SKU"),
    "salePrice": ("salePrice", "Sale Price", "price"),
    "shippingCharged": ("shippingCharged", "Shipping Charged", "shipping_income"),
    "shippingCost": ("shippingCost", "Shipping Cost", "shipping_label_cost"),
    "platformFees": ("platformFees", "Platform Fees", "fees"),
    "discounts": ("discounts", "Discounts"),
    "refunds": ("refunds", "Refunds"),
    "chargebacks": ("chargebacks", "Chargebacks"),
    "taxCollected": ("taxCollected", "Sales Tax Collected", "tax"),
    "taxRemittedByMarketplace": ("taxRemittedByMarketplace", "Marketplace Remitted?"),
    "purchasePrice": ("purchasePrice", "Purchase Price", "cost"),
    "currency": ("currency", "Currency"),
    "buyerState": ("buyerState", "buyer_state", "Buyer State"),
    "itemId": ("itemId", "Item ID"),
}

EXPENSE_ALIASES: dict[str, tuple[str, ...]] = {
    "occurredAt": ("occurredAt", "date", "Date"),
    "amount": ("amount", "Amount"),
    "category": ("category", "Category"),
    "vendor": ("vendor", "Vendor"),
    "method": ("method", "Method"),
    "note": ("note", "Note"),
    "mileageMiles": ("mileageMiles", "Mileage"),
    "vehicleRate": ("vehicleRate", "Vehicle Rate"),
    "currency": ("currency", "Currency"),
}

_MONEY = {"type": ["string", "number", "null"]}
_TEXT = {"type": ["string", "null"]}
_ID = {"type": ["string", "number", "null"]}

SALE_ROW_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "SaleRow",
    "type": "object",
    "properties": {
        "marketplace": {"type": "string", "minLength": 1},
        "marketplaceOrderId": _ID,
        "soldAt": {"type": "string", "minLength": 1},
        "title": _TEXT,
        "sku": _ID,
        "salePrice": {"type": ["string", "number"]},
        "shippingCharged": _MONEY,
        "shippingCost": _MONEY,
        "platformFees": _MONEY,
        "discounts": _MONEY,
        "refunds": _MONEY,
        "chargebacks": _MONEY,
        "taxCollected": _MONEY,
        "taxRemittedByMarketplace": {"type": ["string", "boolean", "number", "null"]},
        "purchasePrice": _MONEY,
        "currency": {"type": ["string", "null"], "pattern": "^[A-Za-z]{3}$"},
        "buyerState": _TEXT,
        "itemId": _ID,
    },
    "required": ["marketplace", "soldAt", "salePrice"],
}

EXPENSE_ROW_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "ExpenseRow",
    "type": "object",
    "properties": {
        "occurredAt": {"type": "string", "minLength": 1},
        "amount": {"type": ["string", "number"]},
        "category": {"type": "string", "minLength": 1},
        "vendor": _TEXT,
        "method": _TEXT,
        "note": _TEXT,
        "mileageMiles": {"type": ["string", "number", "null"]},
        "vehicleRate": {"type": ["string", "number", "null"]},
        "currency": {"type": ["string", "null"], "pattern": "^[A-Za-z]{3}$"},
    },
    "required": ["occurredAt", "amount", "category"],
}

DATE_FORMATS: tuple[str, ...] = ("%Y-%m-%d", "%m/%d/%Y", "%Y/%m/%d", "%d-%b-%Y")

_TRUTHY = {"y", "yes", "true", "1"}


def normalize_row(row: Mapping[str, Any], aliases: Mapping[str, Sequence[str]]) -> dict[str, Any]:
    """Map export-specific headers onto canonical keys; the first non-empty alias wins."""

    canonical: dict[str, Any] = {}
    for key, candidates in aliases.items():
        for candidate in candidates:
            value = row.get(candidate)
            if isinstance(value, str):
                value = value.strip()
            if value is not None and value != "":
                canonical[key] = value
                break
    return canonical


def parse_occurrence(value: str) -> datetime:
    """Parse an export date with the known formats first, then ISO-8601.

    Naive results are taken to be UTC.
    """

    text = str(value).strip()
    parsed: datetime | None = None
    for fmt in DATE_FORMATS:
        try:
            parsed = datetime.strptime(text, fmt)
            break
        except ValueError:
            continue
    if parsed is None:
        try:
            parsed = date_parser.isoparse(text)
        except (ValueError, OverflowError) as exc:
            raise ValidationError(f"Unrecognized date: {text}") from exc
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def norm_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value if value is not None else "").strip().lower() in _TRUTHY


def idempotency_key(parts: Sequence[Any]) -> str:
    """Return the SHA-256 hex digest of the canonical JSON encoding of ``parts``."""
    canonical = json.dumps(list(parts), separators=(",", ":"), ensure_ascii=False, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def _optional_decimal(value: Any, field_name: str) -> Decimal | None:
    if value is None:
        return None
    try:
        return Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValidationError(f"{field_name} must be numeric, got '{value}'") from exc


@dataclass(slots=True)
class IngestResult:
    """Outcome of one import batch; ``row`` indexes are zero-based."""

    inserted_ids: list[str] = field(default_factory=list)
    duplicates: list[dict[str, Any]] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def inserted_count(self) -> int:
        return len(self.inserted_ids)


class TransactionIngestService:
    """Imports loosely keyed export rows, one unit of work per row."""

    def __init__(self, session: Session, *, default_currency: str = "USD") -> None:
        self._session = session
        self._default_currency = default_currency
        self._sale_validator = Draft202012Validator(SALE_ROW_SCHEMA)
        self._expense_validator = Draft202012Validator(EXPENSE_ROW_SCHEMA)

    def import_sales(self, org_id: str, source_label: str, rows: Sequence[Any]) -> IngestResult:
        require_organization(self._session, org_id)
        result = IngestResult()
        for index, row in enumerate(rows):
            try:
                sale = self._build_sale(org_id, source_label, row)
            except ValidationError as exc:
                self._record_error(result, "sale", index, str(exc))
                continue
            self._insert(result, "sale", index, Sale, sale)
        self._log_batch("sale", org_id, source_label, result)
        return result

    def import_expenses(self, org_id: str, source_label: str, rows: Sequence[Any]) -> IngestResult:
        require_organization(self._session, org_id)
        result = IngestResult()
        for index, row in enumerate(rows):
            try:
                expense = self._build_expense(org_id, source_label, row)
            except ValidationError as exc:
                self._record_error(result, "expense", index, str(exc))
                continue
            self._insert(result, "expense", index, Expense, expense)
        self._log_batch("expense", org_id, source_label, result)
        return result

    def _canonicalize(
        self, row: Any, aliases: Mapping[str, Sequence[str]], validator: Draft202012Validator
    ) -> dict[str, Any]:
        if not isinstance(row, Mapping):
            raise ValidationError("Row must be an object")
        canonical = normalize_row(row, aliases)
        errors = sorted(validator.iter_errors(canonical), key=lambda e: list(e.path))
        if errors:
            raise ValidationError("; ".join(self._format_error(error) for error in errors))
        return canonical

    @staticmethod
    def _format_error(error: Any) -> str:
        path = "->".join(str(part) for part in error.path)
        return f"{path or '<root>'}: {error.message}"

    def _build_sale(self, org_id: str, source_label: str, row: Any) -> Sale:
        canonical = self._canonicalize(row, SALE_ALIASES, self._sale_validator)
        currency = str(canonical.get("currency") or self._default_currency).upper()
        sold_at = parse_occurrence(canonical["soldAt"])
        marketplace = str(canonical["marketplace"]).strip().lower()
        order_id = _optional_text(canonical.get("marketplaceOrderId"))
        sale_price = parse_money(canonical["salePrice"], currency)
        row_hash = idempotency_key([source_label, marketplace, order_id or "", sold_at.isoformat(), sale_price])
        return Sale(
            org_id=org_id,
            source_label=source_label,
            marketplace=marketplace,
            marketplace_order_id=order_id,
            sold_at=sold_at,
            title=_optional_text(canonical.get("title")),
            sku=_optional_text(canonical.get("sku")),
            item_ref=_optional_text(canonical.get("itemId")),
            buyer_state=_optional_text(canonical.get("buyerState")),
            currency=currency,
            sale_price_cents=sale_price,
            shipping_charged_cents=parse_money(canonical.get("shippingCharged"), currency),
            shipping_cost_cents=parse_money(canonical.get("shippingCost"), currency),
            platform_fees_cents=parse_money(canonical.get("platformFees"), currency),
            discounts_cents=parse_money(canonical.get("discounts"), currency),
            refunds_cents=parse_money(canonical.get("refunds"), currency),
            chargebacks_cents=parse_money(canonical.get("chargebacks"), currency),
            tax_collected_cents=parse_money(canonical.get("taxCollected"), currency),
            tax_remitted_by_marketplace=norm_bool(canonical.get("taxRemittedByMarketplace")),
            purchase_price_cents=parse_money(canonical.get("purchasePrice"), currency),
            raw_payload=dict(row),
            row_hash=row_hash,
        )

    def _build_expense(self, org_id: str, source_label: str, row: Any) -> Expense:
        canonical = self._canonicalize(row, EXPENSE_ALIASES, self._expense_validator)
        currency = str(canonical.get("currency") or self._default_currency).upper()
        occurred_at = parse_occurrence(canonical["occurredAt"])
        amount = parse_money(canonical["amount"], currency)
        category = str(canonical["category"]).strip()
        vendor = _optional_text(canonical.get("vendor"))
        row_hash = idempotency_key(
            [source_label, "expense", vendor or "", occurred_at.isoformat(), amount, category]
        )
        return Expense(
            org_id=org_id,
            source_label=source_label,
            occurred_at=occurred_at,
            amount_cents=amount,
            currency=currency,
            category=category,
            vendor=vendor,
            method=_optional_text(canonical.get("method")),
            note=_optional_text(canonical.get("note")),
            mileage_miles=_optional_decimal(canonical.get("mileageMiles"), "mileageMiles"),
            vehicle_rate=_optional_decimal(canonical.get("vehicleRate"), "vehicleRate"),
            raw_payload=dict(row),
            row_hash=row_hash,
        )

    def _insert(
        self, result: IngestResult, kind: str, index: int, model: type[Sale] | type[Expense], record: Any
    ) -> None:
        try:
            self._ensure_new(model, record.org_id, record.row_hash)
            self._session.add(record)
            try:
                self._session.commit()
            except IntegrityError as exc:
                # A concurrent import committed the same key between lookup and insert.
                self._session.rollback()
                raise DuplicateTransactionError(record.row_hash) from exc
        except DuplicateTransactionError as exc:
            result.duplicates.append({"row": index, "idempotency_key": exc.idempotency_key})
            record_ingest_row(kind, "duplicate")
            return
        except (SQLAlchemyError, OverflowError) as exc:
            # The row is lost but the rest of the batch continues.
            self._session.rollback()
            logger.warning(
                "failed to store %s row",
                kind,
                extra={"org_id": record.org_id, "row": index, "error": str(exc)},
            )
            self._record_error(result, kind, index, f"Could not store row: {type(exc).__name__}")
            return
        result.inserted_ids.append(record.id)
        record_ingest_row(kind, "inserted")

    def _ensure_new(self, model: type[Sale] | type[Expense], org_id: str, row_hash: str) -> None:
        existing = self._session.scalar(
            select(model.id).where(model.org_id == org_id, model.row_hash == row_hash)
        )
        if existing is not None:
            raise DuplicateTransactionError(row_hash)

    @staticmethod
    def _record_error(result: IngestResult, kind: str, index: int, reason: str) -> None:
        result.errors.append({"row": index, "reason": reason})
        record_ingest_row(kind, "error")

    @staticmethod
    def _log_batch(kind: str, org_id: str, source_label: str, result: IngestResult) -> None:
        logger.info(
            "imported %s rows",
            kind,
            extra={
                "org_id": org_id,
                "source_label": source_label,
                "inserted": result.inserted_count,
                "duplicates": len(result.duplicates),
                "errors": len(result.errors),
            },
        )


__all__ = [
    "DATE_FORMATS",
    "EXPENSE_ALIASES",
    "EXPENSE_ROW_SCHEMA",
    "IngestResult",
    "SALE_ALIASES",
    "SALE_ROW_SCHEMA",
    "TransactionIngestService",
    "idempotency_key",
    "norm_bool",
    "normalize_row",
    "parse_occurrence",
]

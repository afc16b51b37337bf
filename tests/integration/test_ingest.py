from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from conftest import ORG_ID
from ledgerbridge.models import Expense, ExtraCost, Sale
from ledgerbridge.services.cogs import lock_sale_cogs, period_profit, record_payout
from ledgerbridge.services.errors import OrganizationNotFoundError
from ledgerbridge.services.ingest import TransactionIngestService

SALE_ROWS = [
    {
        "Marketplace": "eBay",
        "Order ID": "A-100",
        "Sold At": "2024-03-05",
        "Sale Price": "$100.00",
        "Shipping Charged": "5.00",
        "Shipping Cost": "3.00",
        "Platform Fees": "8.00",
        "Purchase Price": "40.00",
    },
    {
        "marketplace": "poshmark",
        "orderId": "P-7",
        "soldAt": "03/06/2024",
        "salePrice": 25,
        "fees": "5.00",
    },
]


def test_import_is_idempotent(db_session: Session) -> None:
    service = TransactionIngestService(db_session)

    first = service.import_sales(ORG_ID, "csv", SALE_ROWS)
    second = service.import_sales(ORG_ID, "csv", SALE_ROWS)

    assert first.inserted_count == 2
    assert first.errors == []
    assert second.inserted_count == 0
    assert [item["row"] for item in second.duplicates] == [0, 1]
    assert db_session.scalar(select(func.count()).select_from(Sale)) == 2


def test_bad_rows_are_reported_without_failing_the_batch(db_session: Session) -> None:
    service = TransactionIngestService(db_session)
    rows = [
        {"marketplace": "ebay", "soldAt": "not a date", "salePrice": "1.00"},
        {"marketplace": "ebay", "soldAt": "2024-03-05"},
        "not-an-object",
        {"marketplace": "ebay", "soldAt": "2024-03-05", "salePrice": "1.00", "orderId": "ok"},
    ]

    result = service.import_sales(ORG_ID, "csv", rows)

    assert result.inserted_count == 1
    assert [error["row"] for error in result.errors] == [0, 1, 2]
    assert "Unrecognized date" in result.errors[0]["reason"]
    assert "salePrice" in result.errors[1]["reason"]


def test_imported_sale_is_stored_in_minor_units(db_session: Session) -> None:
    TransactionIngestService(db_session).import_sales(ORG_ID, "csv", SALE_ROWS[:1])

    sale = db_session.scalars(select(Sale)).one()
    assert sale.marketplace == "ebay"
    assert sale.sale_price_cents == 10000
    assert sale.shipping_charged_cents == 500
    assert sale.purchase_price_cents == 4000
    assert sale.raw_payload["Order ID"] == "A-100"


def test_import_expenses(db_session: Session) -> None:
    service = TransactionIngestService(db_session)
    rows = [
        {"Date": "2024-03-07", "Amount": "(12.50)", "Category": "Supplies", "Vendor": "Uline"},
        {"Date": "2024-03-08", "Amount": "30", "Category": "Mileage", "Mileage": "42.5", "Vehicle Rate": "0.67"},
    ]

    first = service.import_expenses(ORG_ID, "bank", rows)
    second = service.import_expenses(ORG_ID, "bank", rows)

    assert first.inserted_count == 2
    assert second.inserted_count == 0
    amounts = sorted(db_session.scalars(select(Expense.amount_cents)))
    assert amounts == [-1250, 3000]


def test_unknown_organization_is_rejected(db_session: Session) -> None:
    with pytest.raises(OrganizationNotFoundError):
        TransactionIngestService(db_session).import_sales("missing-org", "csv", SALE_ROWS)


def test_lock_cogs_and_period_profit(db_session: Session) -> None:
    service = TransactionIngestService(db_session)
    sale_id = service.import_sales(ORG_ID, "csv", SALE_ROWS[:1]).inserted_ids[0]
    db_session.add(
        ExtraCost(
            org_id=ORG_ID,
            sale_id=sale_id,
            kind="cleaning",
            amount_cents=250,
            incurred_at=datetime(2024, 3, 4, tzinfo=timezone.utc),
        )
    )
    db_session.commit()
    service.import_expenses(ORG_ID, "bank", [{"Date": "2024-03-20", "Amount": "10", "Category": "Fees"}])

    sale = lock_sale_cogs(db_session, ORG_ID, sale_id)
    record_payout(db_session, ORG_ID, sale_id, datetime(2024, 3, 9, tzinfo=timezone.utc), 9400)
    summary = period_profit(db_session, ORG_ID, datetime(2024, 3, 1).date(), datetime(2024, 3, 31).date())

    assert sale.locked_cogs_cents == 4250
    assert sale.payout_amount_cents == 9400
    assert summary.sales_count == 1
    assert summary.revenue == 10500
    assert summary.gross_profit == 10500 - 4250 - 300 - 800
    assert summary.expenses == 1000
    assert summary.net_profit == summary.gross_profit - 1000


def _sale_row(order_id: str, price: str) -> dict[str, str]:
    return {"marketplace": "ebay", "orderId": order_id, "soldAt": "2024-03-05", "salePrice": price}


def test_oversized_amount_is_a_row_error(db_session: Session) -> None:
    rows = [_sale_row("A-1", "10.00"), _sale_row("A-2", "99999999999999999999"), _sale_row("A-3", "5.00")]

    result = TransactionIngestService(db_session).import_sales(ORG_ID, "csv", rows)

    assert result.inserted_count == 2
    assert [error["row"] for error in result.errors] == [1]
    assert "out of range" in result.errors[0]["reason"]
    assert sorted(db_session.scalars(select(Sale.sale_price_cents))) == [500, 1000]


def test_storage_failure_on_one_row_keeps_the_batch_going(
    db_session: Session, monkeypatch: pytest.MonkeyPatch
) -> None:
    real_commit = db_session.commit
    calls = {"count": 0}

    def flaky_commit() -> None:
        calls["count"] += 1
        if calls["count"] == 2:
            raise OperationalError("INSERT INTO sales", {}, Exception("disk I/O error"))
        real_commit()

    monkeypatch.setattr(db_session, "commit", flaky_commit)
    rows = [_sale_row("B-1", "1.00"), _sale_row("B-2", "2.00"), _sale_row("B-3", "3.00")]

    result = TransactionIngestService(db_session).import_sales(ORG_ID, "csv", rows)

    assert result.inserted_count == 2
    assert result.errors == [{"row": 1, "reason": "Could not store row: OperationalError"}]
    monkeypatch.undo()
    orders = sorted(db_session.scalars(select(Sale.marketplace_order_id)))
    assert orders == ["B-1", "B-3"]

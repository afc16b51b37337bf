"""Cost of goods sold and profit calculations."""
from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ledgerbridge.models import Expense, ExtraCost, Sale
from ledgerbridge.services.errors import ValidationError
from ledgerbridge.services.money import add, subtract

logger = logging.getLogger(__name__)


def locked_cost(purchase_price: int | None, extra_costs: Iterable[int | None] = ()) -> int:
    """Return the cost basis of a sold item: purchase price plus every extra cost."""
    return add(purchase_price, *extra_costs)


def gross_profit(
    sale_price: int | None,
    shipping_charged: int | None,
    cogs: int | None,
    shipping_cost: int | None,
    platform_fees: int | None,
    discounts: int | None,
    refunds: int | None,
    chargebacks: int | None,
) -> int:
    """Return revenue minus every cost-like deduction.

    Discounts, refunds and chargebacks are deducted alongside costs rather than
    netted against revenue. A negative result is a loss and is kept as is.
    """

    revenue = add(sale_price, shipping_charged)
    return subtract(revenue, cogs, shipping_cost, platform_fees, discounts, refunds, chargebacks)


def net_profit(gross: int | None, period_expenses: int | None) -> int:
    return subtract(gross, period_expenses)


@dataclass(slots=True, frozen=True)
class SaleProfit:
    """Per-sale profit breakdown in minor units."""

    sale_id: str
    revenue: int
    cogs: int
    deductions: int
    gross_profit: int

    @classmethod
    def from_sale(cls, sale: Sale) -> "SaleProfit":
        cogs = sale.locked_cogs_cents or sale.purchase_price_cents
        gross = gross_profit(
            sale.sale_price_cents,
            sale.shipping_charged_cents,
            cogs,
            sale.shipping_cost_cents,
            sale.platform_fees_cents,
            sale.discounts_cents,
            sale.refunds_cents,
            sale.chargebacks_cents,
        )
        revenue = add(sale.sale_price_cents, sale.shipping_charged_cents)
        return cls(
            sale_id=sale.id,
            revenue=revenue,
            cogs=int(cogs or 0),
            deductions=revenue - int(cogs or 0) - gross,
            gross_profit=gross,
        )


@dataclass(slots=True, frozen=True)
class PeriodProfit:
    """Aggregated profit for one organization over a date window."""

    org_id: str
    period_start: date
    period_end: date
    sales_count: int
    revenue: int
    cogs: int
    gross_profit: int
    expenses: int
    net_profit: int


def period_bounds(period_start: date, period_end: date) -> tuple[datetime, datetime]:
    """Return the UTC half-open datetime range covering both dates inclusively."""

    if period_end < period_start:
        raise ValidationError("periodEnd must not be before periodStart")
    start = datetime.combine(period_start, time.min, tzinfo=timezone.utc)
    end = datetime.combine(period_end + timedelta(days=1), time.min, tzinfo=timezone.utc)
    return start, end


def _get_sale(session: Session, org_id: str, sale_id: str) -> Sale:
    sale = session.get(Sale, sale_id)
    if sale is None or sale.org_id != org_id:
        raise ValidationError(f"Sale '{sale_id}' was not found for organization '{org_id}'")
    return sale


def lock_sale_cogs(session: Session, org_id: str, sale_id: str) -> Sale:
    """Freeze the sale's cost basis from its purchase price and extra costs."""

    sale = _get_sale(session, org_id, sale_id)
    extras = session.scalars(
        select(ExtraCost.amount_cents).where(ExtraCost.org_id == org_id, ExtraCost.sale_id == sale.id)
    ).all()
    sale.locked_cogs_cents = locked_cost(sale.purchase_price_cents, extras)
    session.commit()
    session.refresh(sale)
    logger.info(
        "Locked sale COGS",
        extra={"org_id": org_id, "sale_id": sale.id, "locked_cogs_cents": sale.locked_cogs_cents},
    )
    return sale


def record_payout(session: Session, org_id: str, sale_id: str, payout_at: datetime, amount: int) -> Sale:
    """Attach the marketplace payout to a sale; the only post-import edit besides COGS locking."""

    sale = _get_sale(session, org_id, sale_id)
    sale.payout_at = payout_at
    sale.payout_amount_cents = int(amount)
    session.commit()
    session.refresh(sale)
    return sale


def period_profit(session: Session, org_id: str, period_start: date, period_end: date) -> PeriodProfit:
    """Summarize revenue, COGS, gross profit, expenses and net profit for a window."""

    start, end = period_bounds(period_start, period_end)
    sales = session.scalars(
        select(Sale).where(Sale.org_id == org_id, Sale.sold_at >= start, Sale.sold_at < end)
    ).all()
    breakdowns = [SaleProfit.from_sale(sale) for sale in sales]
    expenses = session.scalar(
        select(func.coalesce(func.sum(Expense.amount_cents), 0)).where(
            Expense.org_id == org_id, Expense.occurred_at >= start, Expense.occurred_at < end
        )
    )
    gross = add(*(item.gross_profit for item in breakdowns))
    return PeriodProfit(
        org_id=org_id,
        period_start=period_start,
        period_end=period_end,
        sales_count=len(breakdowns),
        revenue=add(*(item.revenue for item in breakdowns)),
        cogs=add(*(item.cogs for item in breakdowns)),
        gross_profit=gross,
        expenses=int(expenses or 0),
        net_profit=net_profit(gross, expenses),
    )


__all__ = [
    "PeriodProfit",
    "SaleProfit",
    "gross_profit",
    "lock_sale_cogs",
    "locked_cost",
    "net_profit",
    "period_bounds",
    "period_profit",
    "record_payout",
]

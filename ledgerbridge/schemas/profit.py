"""Pydantic schemas for profit reporting."""
from __future__ import annotations

from datetime import date

from ledgerbridge.schemas.common import CamelModel


class PeriodProfitResponse(CamelModel):
    org_id: str
    period_start: date
    period_end: date
    currency: str
    sales_count: int
    revenue: int
    cogs: int
    gross_profit: int
    expenses: int
    net_profit: int
    net_profit_display: str


__all__ = ["PeriodProfitResponse"]

"""Period profit reporting route."""
from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from ledgerbridge.api.deps import get_app_settings, get_db_session
from ledgerbridge.core.config import Settings
from ledgerbridge.schemas.profit import PeriodProfitResponse
from ledgerbridge.services.cogs import period_profit
from ledgerbridge.services.connections import require_organization
from ledgerbridge.services.errors import OrganizationNotFoundError, ValidationError
from ledgerbridge.services.money import format_money

router = APIRouter()


@router.get("/profit", response_model=PeriodProfitResponse)
def get_period_profit(
    request: Request,
    org_id: str = Query(..., alias="orgId"),
    period_start: date = Query(..., alias="periodStart"),
    period_end: date = Query(..., alias="periodEnd"),
    session: Session = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
) -> PeriodProfitResponse:
    request.state.org_id = org_id
    try:
        require_organization(session, org_id)
        summary = period_profit(session, org_id, period_start, period_end)
    except OrganizationNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc

    currency = settings.default_currency
    return PeriodProfitResponse(
        org_id=summary.org_id,
        period_start=summary.period_start,
        period_end=summary.period_end,
        currency=currency,
        sales_count=summary.sales_count,
        revenue=summary.revenue,
        cogs=summary.cogs,
        gross_profit=summary.gross_profit,
        expenses=summary.expenses,
        net_profit=summary.net_profit,
        net_profit_display=format_money(summary.net_profit, currency),
    )


__all__ = ["get_period_profit", "router"]

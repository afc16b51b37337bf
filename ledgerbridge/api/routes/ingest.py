"""Sales and expense import routes."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from ledgerbridge.api.deps import get_app_settings, get_db_session
from ledgerbridge.core.config import Settings
from ledgerbridge.schemas.ingest import IngestRequest, IngestResponse
from ledgerbridge.services.errors import OrganizationNotFoundError
from ledgerbridge.services.ingest import IngestResult, TransactionIngestService

router = APIRouter(prefix="/ingest")


def _to_response(result: IngestResult) -> IngestResponse:
    return IngestResponse(
        inserted_count=result.inserted_count,
        inserted_ids=result.inserted_ids,
        duplicates=result.duplicates,
        errors=result.errors,
    )


@router.post("/sales", response_model=IngestResponse)
def import_sales(
    payload: IngestRequest,
    request: Request,
    session: Session = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
) -> IngestResponse:
    request.state.org_id = payload.org_id
    service = TransactionIngestService(session, default_currency=settings.default_currency)
    try:
        result = service.import_sales(payload.org_id, payload.source_label, payload.rows)
    except OrganizationNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return _to_response(result)


@router.post("/expenses", response_model=IngestResponse)
def import_expenses(
    payload: IngestRequest,
    request: Request,
    session: Session = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
) -> IngestResponse:
    request.state.org_id = payload.org_id
    service = TransactionIngestService(session, default_currency=settings.default_currency)
    try:
        result = service.import_expenses(payload.org_id, payload.source_label, payload.rows)
    except OrganizationNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return _to_response(result)


__all__ = ["import_expenses", "import_sales", "router"]

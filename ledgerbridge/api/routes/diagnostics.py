"""Integration diagnostics route."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from ledgerbridge.api.deps import get_alert_channels, get_app_settings, get_db_session
from ledgerbridge.core.config import Settings
from ledgerbridge.schemas.diagnostics import (
    ConnectionHealthRead,
    DiagnosticsRequest,
    DiagnosticsResponse,
)
from ledgerbridge.services.alerts import AlertChannel, AlertDispatcher
from ledgerbridge.services.diagnostics import DiagnosticsService
from ledgerbridge.services.errors import OrganizationNotFoundError

router = APIRouter()


@router.post("/diagnostics", response_model=DiagnosticsResponse)
def run_diagnostics(
    payload: DiagnosticsRequest,
    request: Request,
    session: Session = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
    channels: list[AlertChannel] = Depends(get_alert_channels),
) -> DiagnosticsResponse:
    request.state.org_id = payload.org_id
    dispatcher = AlertDispatcher(session, settings=settings, channels=channels)
    service = DiagnosticsService(session, settings=settings, dispatcher=dispatcher)
    try:
        run = service.run(
            payload.org_id,
            save=payload.save,
            last_test_forward_id=payload.last_test_forward_id,
            last_test_reverse_id=payload.last_test_reverse_id,
            last_verified_at=payload.last_verified_at,
        )
    except OrganizationNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    report = run.report
    health = ConnectionHealthRead(
        connected=report.health.connected,
        expires_in_sec=report.health.expires_in_sec,
        realm_id=report.health.realm_id,
    )
    return DiagnosticsResponse(
        health=health, missing=report.missing, warnings=report.warnings, overall=report.overall
    )


__all__ = ["router", "run_diagnostics"]

"""Journal preview, commit, test posting and verification routes."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ledgerbridge.api.deps import get_app_settings, get_db_session, get_ledger_client_factory
from ledgerbridge.core.config import Settings
from ledgerbridge.schemas.journal import (
    JournalCommitItem,
    JournalCommitResponse,
    JournalPeriodRequest,
    JournalPreviewResponse,
    TestReverseRequest,
    TestReverseResponse,
    VerifyRequest,
    VerifyResponse,
    VerifyResult,
)
from ledgerbridge.services.connections import require_organization
from ledgerbridge.services.errors import (
    ExternalApiError,
    MappingIncompleteError,
    NotConnectedError,
    OrganizationNotFoundError,
    PartialSequenceError,
    ValidationError,
)
from ledgerbridge.services.journal_sync import JournalSyncService
from ledgerbridge.services.ledger_client import LedgerClientFactory
from ledgerbridge.services.verification import VerificationProbe

router = APIRouter(prefix="/journals")


@router.post("/preview", response_model=JournalPreviewResponse)
def preview_journals(
    payload: JournalPeriodRequest,
    request: Request,
    session: Session = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
    client_factory: LedgerClientFactory = Depends(get_ledger_client_factory),
) -> JournalPreviewResponse:
    request.state.org_id = payload.org_id
    service = JournalSyncService(session, settings=settings, client_factory=client_factory)
    try:
        preview = service.preview(payload.org_id, payload.period_start, payload.period_end, payload.mode)
    except OrganizationNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return JournalPreviewResponse(
        org_id=preview.org_id,
        provider=preview.provider,
        period_start=preview.period_start,
        period_end=preview.period_end,
        mode=preview.mode,
        missing=preview.missing,
        journals=[draft.summary() for draft in preview.drafts],
    )


@router.post("/commit", response_model=JournalCommitResponse)
def commit_journals(
    payload: JournalPeriodRequest,
    request: Request,
    session: Session = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
    client_factory: LedgerClientFactory = Depends(get_ledger_client_factory),
) -> JournalCommitResponse:
    request.state.org_id = payload.org_id
    service = JournalSyncService(session, settings=settings, client_factory=client_factory)
    try:
        results = service.commit(payload.org_id, payload.period_start, payload.period_end, payload.mode)
    except OrganizationNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except (NotConnectedError, MappingIncompleteError) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return JournalCommitResponse(
        results=[
            JournalCommitItem(
                export_id=result.export_id,
                status=result.status,
                txn_date=result.txn_date,
                external_id=result.external_id,
                error=result.error,
            )
            for result in results
        ]
    )


@router.post("/test-reverse", response_model=TestReverseResponse)
def run_test_reverse(
    payload: TestReverseRequest,
    request: Request,
    session: Session = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
    client_factory: LedgerClientFactory = Depends(get_ledger_client_factory),
):
    request.state.org_id = payload.org_id
    service = JournalSyncService(session, settings=settings, client_factory=client_factory)
    try:
        result = service.run_reversing_test(
            payload.org_id, same_day_reverse=payload.same_day_reverse, note=payload.note
        )
    except PartialSequenceError as exc:
        body = TestReverseResponse(
            forward_id=exc.forward_id,
            reverse_id=None,
            txn_date=exc.txn_date,
            reverse_date=exc.reverse_date,
            error=exc.reason,
        )
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content=body.model_dump(mode="json", by_alias=True),
        )
    except OrganizationNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except (NotConnectedError, MappingIncompleteError) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except ExternalApiError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return TestReverseResponse(
        forward_id=result.forward_id,
        reverse_id=result.reverse_id,
        txn_date=result.txn_date,
        reverse_date=result.reverse_date,
    )


@router.post("/verify", response_model=VerifyResponse)
def verify_journals(
    payload: VerifyRequest,
    request: Request,
    session: Session = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
    client_factory: LedgerClientFactory = Depends(get_ledger_client_factory),
) -> VerifyResponse:
    request.state.org_id = payload.org_id
    try:
        require_organization(session, payload.org_id)
    except OrganizationNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    verifier = VerificationProbe(session, settings=settings, client_factory=client_factory)
    results = verifier.verify(payload.org_id, payload.ids, payload.expected_dates)
    return VerifyResponse(
        results=[
            VerifyResult(
                id=result.id,
                found=result.found,
                txn_date=result.txn_date,
                date_matches=result.date_matches,
                error=result.error,
            )
            for result in results
        ]
    )


__all__ = ["commit_journals", "preview_journals", "router", "run_test_reverse", "verify_journals"]

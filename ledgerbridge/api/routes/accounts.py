"""Chart-of-accounts cache routes."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from ledgerbridge.api.deps import get_app_settings, get_db_session, get_ledger_client_factory
from ledgerbridge.core.config import Settings
from ledgerbridge.schemas.mapping import AccountRefreshRequest, AccountRefreshResponse
from ledgerbridge.services.bucket_map import AccountMappingService
from ledgerbridge.services.connections import require_connection, require_organization
from ledgerbridge.services.errors import ExternalApiError, NotConnectedError, OrganizationNotFoundError
from ledgerbridge.services.ledger_client import LedgerClientFactory

router = APIRouter(prefix="/accounts")


@router.post("/refresh", response_model=AccountRefreshResponse)
def refresh_accounts(
    payload: AccountRefreshRequest,
    request: Request,
    session: Session = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
    client_factory: LedgerClientFactory = Depends(get_ledger_client_factory),
) -> AccountRefreshResponse:
    request.state.org_id = payload.org_id
    service = AccountMappingService(session, provider=settings.ledger_provider)
    try:
        require_organization(session, payload.org_id)
        connection = require_connection(session, payload.org_id, settings.ledger_provider)
        client = client_factory(connection)
        try:
            count = service.refresh_account_cache(payload.org_id, client)
        finally:
            client.close()
    except OrganizationNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except NotConnectedError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except ExternalApiError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return AccountRefreshResponse(count=count)


__all__ = ["refresh_accounts", "router"]

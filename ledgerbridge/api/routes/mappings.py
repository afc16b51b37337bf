"""Bucket mapping routes."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from ledgerbridge.api.deps import get_app_settings, get_db_session
from ledgerbridge.core.config import Settings
from ledgerbridge.schemas.mapping import MappingListResponse, MappingRead, MappingUpsertRequest
from ledgerbridge.services.bucket_map import AccountMappingService, missing_buckets, type_warnings
from ledgerbridge.services.connections import require_organization
from ledgerbridge.services.errors import OrganizationNotFoundError, ValidationError

router = APIRouter(prefix="/mappings")


@router.get("", response_model=MappingListResponse)
def list_mappings(
    request: Request,
    org_id: str = Query(..., alias="orgId"),
    provider: str | None = Query(default=None),
    session: Session = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
) -> MappingListResponse:
    request.state.org_id = org_id
    service = AccountMappingService(session, provider=provider or settings.ledger_provider)
    try:
        require_organization(session, org_id)
    except OrganizationNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    by_bucket = service.mapping_by_bucket(org_id)
    return MappingListResponse(
        mappings=[MappingRead.model_validate(mapping) for mapping in by_bucket.values()],
        missing=missing_buckets(by_bucket),
        warnings=type_warnings(by_bucket, service.cached_accounts(org_id)),
    )


@router.put("", response_model=MappingRead)
def save_mapping(
    payload: MappingUpsertRequest,
    request: Request,
    session: Session = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
) -> MappingRead:
    request.state.org_id = payload.org_id
    service = AccountMappingService(session, provider=payload.provider or settings.ledger_provider)
    try:
        mapping = service.save_mapping(
            payload.org_id, payload.bucket, payload.external_account_id, payload.name
        )
    except OrganizationNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return MappingRead.model_validate(mapping)


__all__ = ["list_mappings", "router", "save_mapping"]

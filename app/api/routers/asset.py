from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response, status

from app.api.deps import require_perm
from app.api.errors import handle_engine_error
from app.domain.errors import EngineError
from app.domain.models import (
    AssetCreate,
    AssetLoanableUpdateRequest,
    AssetRead,
    AssetStatusSummaryRead,
    AssetUpdate,
    NextTagRead,
)
from app.domain.permissions import PERM_ASSET_READ, PERM_ASSET_WRITE
from app.domain.state_machine import TrackingStatus
from app.infra.audit import set_audit_context
from app.services.asset_service import AssetService

router = APIRouter()


def get_asset_service() -> AssetService:
    return AssetService()


Service = Annotated[AssetService, Depends(get_asset_service)]


@router.post(
    "",
    response_model=AssetRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_ASSET_WRITE))],
)
def create_asset(payload: AssetCreate, request: Request, service: Service) -> AssetRead:
    set_audit_context(request, action="asset.create", detail={"what": {"tag": payload.tag}})
    try:
        asset = service.create_asset(payload)
        return AssetRead.model_validate(asset)
    except EngineError as exc:
        handle_engine_error(exc)


@router.get(
    "",
    response_model=list[AssetRead],
    dependencies=[Depends(require_perm(PERM_ASSET_READ))],
)
def list_assets(
    service: Service,
    tracking_status: TrackingStatus | None = None,
    search: str | None = None,
    available_for_loan: bool | None = None,
) -> list[AssetRead]:
    rows = service.list_assets(
        tracking_status=tracking_status,
        search=search,
        available_for_loan=available_for_loan,
    )
    return [AssetRead.model_validate(item) for item in rows]


@router.get(
    "/next-tag",
    response_model=NextTagRead,
    dependencies=[Depends(require_perm(PERM_ASSET_READ))],
)
def next_tag(service: Service) -> NextTagRead:
    return NextTagRead(tag=service.next_tag())


@router.get(
    "/summary",
    response_model=AssetStatusSummaryRead,
    dependencies=[Depends(require_perm(PERM_ASSET_READ))],
)
def status_summary(service: Service) -> AssetStatusSummaryRead:
    return AssetStatusSummaryRead.model_validate(service.status_summary())


@router.get(
    "/scan",
    response_model=AssetRead,
    dependencies=[Depends(require_perm(PERM_ASSET_READ))],
)
def resolve_scan(code: str, service: Service) -> AssetRead:
    try:
        return AssetRead.model_validate(service.resolve_scan(code))
    except EngineError as exc:
        handle_engine_error(exc)


@router.get(
    "/compliance/hoto",
    response_model=list[AssetRead],
    dependencies=[Depends(require_perm(PERM_ASSET_READ))],
)
def list_non_compliant(service: Service) -> list[AssetRead]:
    return [AssetRead.model_validate(item) for item in service.list_non_compliant()]


@router.get(
    "/{asset_id}",
    response_model=AssetRead,
    dependencies=[Depends(require_perm(PERM_ASSET_READ))],
)
def get_asset(asset_id: str, service: Service) -> AssetRead:
    try:
        return AssetRead.model_validate(service.get_asset(asset_id))
    except EngineError as exc:
        handle_engine_error(exc)


@router.patch(
    "/{asset_id}",
    response_model=AssetRead,
    dependencies=[Depends(require_perm(PERM_ASSET_WRITE))],
)
def update_asset(asset_id: str, payload: AssetUpdate, request: Request, service: Service) -> AssetRead:
    set_audit_context(
        request,
        action="asset.update",
        detail={"what": {"asset_id": asset_id, "fields": sorted(payload.model_dump(exclude_unset=True))}},
    )
    try:
        return AssetRead.model_validate(service.update_asset(asset_id, payload))
    except EngineError as exc:
        handle_engine_error(exc)


@router.post(
    "/{asset_id}/loanable",
    response_model=AssetRead,
    dependencies=[Depends(require_perm(PERM_ASSET_WRITE))],
)
def set_available_for_loan(
    asset_id: str,
    payload: AssetLoanableUpdateRequest,
    request: Request,
    service: Service,
) -> AssetRead:
    set_audit_context(
        request,
        action="asset.loanable",
        detail={"what": {"asset_id": asset_id, "available_for_loan": payload.available_for_loan}},
    )
    try:
        return AssetRead.model_validate(service.set_available_for_loan(asset_id, payload.available_for_loan))
    except EngineError as exc:
        handle_engine_error(exc)


@router.delete(
    "/{asset_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_ASSET_WRITE))],
)
def delete_asset(asset_id: str, request: Request, service: Service) -> Response:
    set_audit_context(request, action="asset.delete", detail={"what": {"asset_id": asset_id}})
    try:
        service.delete_asset(asset_id)
    except EngineError as exc:
        handle_engine_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

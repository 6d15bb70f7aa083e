from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request

from app.api.deps import get_current_claims, require_perm
from app.api.errors import handle_engine_error
from app.domain.errors import EngineError
from app.domain.models import AssetRead, AuditProgressRead, AuditResetRead, AuditResetRequest
from app.domain.permissions import PERM_AUDIT_READ, PERM_AUDIT_RESET, PERM_AUDIT_VERIFY
from app.infra.audit import set_audit_context
from app.services.audit_cycle_service import AuditCycleService

router = APIRouter()


def get_audit_cycle_service() -> AuditCycleService:
    return AuditCycleService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[AuditCycleService, Depends(get_audit_cycle_service)]


@router.get(
    "/progress",
    response_model=AuditProgressRead,
    dependencies=[Depends(require_perm(PERM_AUDIT_READ))],
)
def audit_progress(service: Service) -> AuditProgressRead:
    return service.progress()


@router.get(
    "/unverified",
    response_model=list[AssetRead],
    dependencies=[Depends(require_perm(PERM_AUDIT_READ))],
)
def list_unverified(service: Service) -> list[AssetRead]:
    return [AssetRead.model_validate(item) for item in service.unverified()]


@router.post(
    "/assets/{asset_id}/verify",
    response_model=AssetRead,
    dependencies=[Depends(require_perm(PERM_AUDIT_VERIFY))],
)
def verify_asset(asset_id: str, request: Request, claims: Claims, service: Service) -> AssetRead:
    set_audit_context(request, action="audit.verify", detail={"what": {"asset_id": asset_id}})
    try:
        return AssetRead.model_validate(service.verify(asset_id, str(claims.get("name") or claims["sub"])))
    except EngineError as exc:
        handle_engine_error(exc)


@router.post(
    "/reset",
    response_model=AuditResetRead,
    dependencies=[Depends(require_perm(PERM_AUDIT_RESET))],
)
def reset_audit_cycle(
    payload: AuditResetRequest,
    request: Request,
    claims: Claims,
    service: Service,
) -> AuditResetRead:
    set_audit_context(request, action="audit.reset", detail={"what": {"confirm": payload.confirm}})
    try:
        reset_count = service.reset_all(str(claims.get("name") or claims["sub"]), confirm=payload.confirm)
    except EngineError as exc:
        handle_engine_error(exc)
    set_audit_context(request, detail={"result": {"reset_count": reset_count}})
    return AuditResetRead(reset_count=reset_count)

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request

from app.api.deps import get_current_claims, require_perm
from app.api.errors import handle_engine_error
from app.domain.errors import EngineError
from app.domain.models import AssetRead, RecloneProgressRead, RecloneQueueItemRead
from app.domain.permissions import PERM_RECLONE_READ, PERM_RECLONE_WRITE
from app.infra.audit import set_audit_context
from app.services.reclone_service import RecloneService

router = APIRouter()


def get_reclone_service() -> RecloneService:
    return RecloneService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[RecloneService, Depends(get_reclone_service)]


def _actor(claims: dict[str, Any]) -> str:
    return str(claims.get("name") or claims["sub"])


@router.get(
    "/queue",
    response_model=list[RecloneQueueItemRead],
    dependencies=[Depends(require_perm(PERM_RECLONE_READ))],
)
def reclone_queue(service: Service) -> list[RecloneQueueItemRead]:
    return service.queue()


@router.get(
    "/{asset_id}",
    response_model=RecloneProgressRead,
    dependencies=[Depends(require_perm(PERM_RECLONE_READ))],
)
def reclone_progress(asset_id: str, service: Service) -> RecloneProgressRead:
    try:
        return service.progress(asset_id)
    except EngineError as exc:
        handle_engine_error(exc)


@router.post(
    "/{asset_id}/steps/{step_id}",
    response_model=RecloneProgressRead,
    dependencies=[Depends(require_perm(PERM_RECLONE_WRITE))],
)
def complete_step(
    asset_id: str,
    step_id: int,
    request: Request,
    claims: Claims,
    service: Service,
) -> RecloneProgressRead:
    set_audit_context(
        request,
        action="reclone.step.complete",
        detail={"what": {"asset_id": asset_id, "step_id": step_id}},
    )
    try:
        service.complete_step(asset_id, step_id, _actor(claims))
        return service.progress(asset_id)
    except EngineError as exc:
        handle_engine_error(exc)


@router.delete(
    "/{asset_id}/steps/{step_id}",
    response_model=RecloneProgressRead,
    dependencies=[Depends(require_perm(PERM_RECLONE_WRITE))],
)
def undo_step(
    asset_id: str,
    step_id: int,
    request: Request,
    claims: Claims,
    service: Service,
) -> RecloneProgressRead:
    set_audit_context(
        request,
        action="reclone.step.undo",
        detail={"what": {"asset_id": asset_id, "step_id": step_id}},
    )
    try:
        removed = service.undo_step(asset_id, step_id, _actor(claims))
        set_audit_context(request, detail={"what": {"removed_steps": removed}})
        return service.progress(asset_id)
    except EngineError as exc:
        handle_engine_error(exc)


@router.post(
    "/{asset_id}/finish",
    response_model=AssetRead,
    dependencies=[Depends(require_perm(PERM_RECLONE_WRITE))],
)
def finish_reclone(asset_id: str, request: Request, claims: Claims, service: Service) -> AssetRead:
    set_audit_context(request, action="reclone.finish", detail={"what": {"asset_id": asset_id}})
    try:
        return AssetRead.model_validate(service.finish(asset_id, _actor(claims)))
    except EngineError as exc:
        handle_engine_error(exc)

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request, Response, status

from app.api.deps import get_current_claims, require_perm
from app.api.errors import handle_engine_error
from app.domain.errors import EngineError
from app.domain.models import (
    AssignmentCreate,
    AssignmentRead,
    PoolSummaryRead,
    PurchaseCreate,
    PurchaseRead,
)
from app.domain.permissions import PERM_POOL_ASSIGN, PERM_POOL_PURCHASE, PERM_POOL_READ
from app.infra.audit import set_audit_context
from app.services.resource_pool_service import TicketPool

router = APIRouter()


def get_ticket_pool() -> TicketPool:
    return TicketPool()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Pool = Annotated[TicketPool, Depends(get_ticket_pool)]


@router.post(
    "/purchases",
    response_model=PurchaseRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_POOL_PURCHASE))],
)
def purchase_tickets(payload: PurchaseCreate, request: Request, claims: Claims, pool: Pool) -> PurchaseRead:
    set_audit_context(
        request,
        action="ticket.purchase",
        detail={"what": {"po_number": payload.po_number, "quantity": payload.quantity}},
    )
    try:
        return PurchaseRead.model_validate(pool.purchase(payload, claims.get("name") or claims["sub"]))
    except EngineError as exc:
        handle_engine_error(exc)


@router.get(
    "/purchases",
    response_model=list[PurchaseRead],
    dependencies=[Depends(require_perm(PERM_POOL_READ))],
)
def list_ticket_purchases(pool: Pool) -> list[PurchaseRead]:
    return [PurchaseRead.model_validate(item) for item in pool.list_purchases()]


@router.get(
    "/available",
    response_model=list[PurchaseRead],
    dependencies=[Depends(require_perm(PERM_POOL_READ))],
)
def list_available_tickets(pool: Pool) -> list[PurchaseRead]:
    return [PurchaseRead.model_validate(item) for item in pool.available_purchases()]


@router.get(
    "/summary",
    response_model=PoolSummaryRead,
    dependencies=[Depends(require_perm(PERM_POOL_READ))],
)
def ticket_summary(pool: Pool) -> PoolSummaryRead:
    return PoolSummaryRead.model_validate(pool.summary())


@router.post(
    "/assignments",
    response_model=AssignmentRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_POOL_ASSIGN))],
)
def assign_ticket(payload: AssignmentCreate, request: Request, claims: Claims, pool: Pool) -> AssignmentRead:
    set_audit_context(
        request,
        action="ticket.assign",
        detail={"what": {"purchase_id": payload.purchase_id, "asset_id": payload.asset_id}},
    )
    try:
        return AssignmentRead.model_validate(pool.assign(payload, claims.get("name") or claims["sub"]))
    except EngineError as exc:
        handle_engine_error(exc)


@router.get(
    "/assignments",
    response_model=list[AssignmentRead],
    dependencies=[Depends(require_perm(PERM_POOL_READ))],
)
def list_ticket_assignments(pool: Pool, asset_id: str | None = None) -> list[AssignmentRead]:
    return [AssignmentRead.model_validate(item) for item in pool.list_assignments(asset_id=asset_id)]


@router.delete(
    "/assignments/{assignment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_POOL_ASSIGN))],
)
def unassign_ticket(assignment_id: str, request: Request, pool: Pool) -> Response:
    set_audit_context(request, action="ticket.unassign", detail={"what": {"assignment_id": assignment_id}})
    try:
        pool.unassign(assignment_id)
    except EngineError as exc:
        handle_engine_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request, status

from app.api.deps import get_current_claims, require_perm
from app.api.errors import handle_engine_error
from app.domain.errors import EngineError
from app.domain.models import LoanRequestCreate, LoanRequestRead, LoanReviewRequest
from app.domain.permissions import PERM_LOAN_READ, PERM_LOAN_REQUEST, PERM_LOAN_REVIEW
from app.domain.state_machine import LoanRequestStatus
from app.infra.audit import set_audit_context
from app.services.loan_service import LoanService

router = APIRouter()


def get_loan_service() -> LoanService:
    return LoanService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[LoanService, Depends(get_loan_service)]


def _actor(claims: dict[str, Any]) -> str:
    return str(claims.get("name") or claims["sub"])


@router.post(
    "",
    response_model=LoanRequestRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_LOAN_REQUEST))],
)
def submit_loan(payload: LoanRequestCreate, request: Request, claims: Claims, service: Service) -> LoanRequestRead:
    set_audit_context(request, action="loan.submit", detail={"what": {"asset_id": payload.asset_id}})
    try:
        return LoanRequestRead.model_validate(service.submit(payload, _actor(claims)))
    except EngineError as exc:
        handle_engine_error(exc)


@router.get(
    "",
    response_model=list[LoanRequestRead],
    dependencies=[Depends(require_perm(PERM_LOAN_READ))],
)
def list_loans(
    service: Service,
    status: LoanRequestStatus | None = None,
    asset_id: str | None = None,
) -> list[LoanRequestRead]:
    rows = service.list_requests(status=status, asset_id=asset_id)
    return [LoanRequestRead.model_validate(item) for item in rows]


@router.get(
    "/{request_id}",
    response_model=LoanRequestRead,
    dependencies=[Depends(require_perm(PERM_LOAN_READ))],
)
def get_loan(request_id: str, service: Service) -> LoanRequestRead:
    try:
        return LoanRequestRead.model_validate(service.get(request_id))
    except EngineError as exc:
        handle_engine_error(exc)


@router.post(
    "/{request_id}/approve",
    response_model=LoanRequestRead,
    dependencies=[Depends(require_perm(PERM_LOAN_REVIEW))],
)
def approve_loan(
    request_id: str,
    payload: LoanReviewRequest,
    request: Request,
    claims: Claims,
    service: Service,
) -> LoanRequestRead:
    set_audit_context(request, action="loan.approve", detail={"what": {"request_id": request_id}})
    try:
        return LoanRequestRead.model_validate(service.approve(request_id, _actor(claims), payload.notes))
    except EngineError as exc:
        handle_engine_error(exc)


@router.post(
    "/{request_id}/reject",
    response_model=LoanRequestRead,
    dependencies=[Depends(require_perm(PERM_LOAN_REVIEW))],
)
def reject_loan(
    request_id: str,
    payload: LoanReviewRequest,
    request: Request,
    claims: Claims,
    service: Service,
) -> LoanRequestRead:
    set_audit_context(request, action="loan.reject", detail={"what": {"request_id": request_id}})
    try:
        return LoanRequestRead.model_validate(service.reject(request_id, _actor(claims), payload.notes))
    except EngineError as exc:
        handle_engine_error(exc)

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request, status

from app.api.deps import get_current_claims, require_perm
from app.api.errors import handle_engine_error
from app.domain.errors import EngineError
from app.domain.models import BootstrapAdminRequest, LoginRequest, TokenResponse, UserCreate, UserRead
from app.domain.permissions import PERM_IDENTITY_READ, PERM_IDENTITY_WRITE
from app.infra.audit import set_audit_context
from app.infra.auth import create_access_token
from app.services.identity_service import IdentityService

router = APIRouter()


def get_identity_service() -> IdentityService:
    return IdentityService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[IdentityService, Depends(get_identity_service)]


@router.post("/bootstrap-admin", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def bootstrap_admin(payload: BootstrapAdminRequest, request: Request, service: Service) -> UserRead:
    set_audit_context(request, action="identity.bootstrap_admin", detail={"what": {"username": payload.username}})
    try:
        user = service.bootstrap_admin(payload)
    except EngineError as exc:
        handle_engine_error(exc)
    return UserRead.model_validate(user)


@router.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest, request: Request, service: Service) -> TokenResponse:
    set_audit_context(request, action="identity.login", detail={"what": {"username": payload.username}})
    try:
        user, permissions = service.authenticate(payload.username, payload.password)
    except EngineError as exc:
        handle_engine_error(exc)
    token = create_access_token(
        user_id=user.id,
        name=user.name,
        role=str(user.role),
        permissions=permissions,
    )
    return TokenResponse(access_token=token, name=user.name, role=user.role, permissions=permissions)


@router.post(
    "/users",
    response_model=UserRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_IDENTITY_WRITE))],
)
def create_user(payload: UserCreate, request: Request, service: Service) -> UserRead:
    set_audit_context(
        request,
        action="identity.user.create",
        detail={"what": {"username": payload.username, "role": str(payload.role)}},
    )
    try:
        user = service.create_user(payload)
    except EngineError as exc:
        handle_engine_error(exc)
    return UserRead.model_validate(user)


@router.get(
    "/users",
    response_model=list[UserRead],
    dependencies=[Depends(require_perm(PERM_IDENTITY_READ))],
)
def list_users(service: Service) -> list[UserRead]:
    return [UserRead.model_validate(item) for item in service.list_users()]


@router.get("/me", response_model=UserRead)
def me(claims: Claims, service: Service) -> UserRead:
    try:
        user = service.get_user(claims["sub"])
    except EngineError as exc:
        handle_engine_error(exc)
    return UserRead.model_validate(user)

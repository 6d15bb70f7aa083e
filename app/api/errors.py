from __future__ import annotations

from typing import NoReturn

from fastapi import HTTPException, status

from app.domain.errors import (
    ConflictError,
    EngineError,
    NotFoundError,
    ResourceExhausted,
    StateError,
    ValidationError,
)
from app.services.identity_service import AuthError

_STATUS_BY_ERROR: tuple[tuple[type[EngineError], int], ...] = (
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ResourceExhausted, status.HTTP_409_CONFLICT),
    (StateError, status.HTTP_409_CONFLICT),
    (ConflictError, status.HTTP_409_CONFLICT),
    (AuthError, status.HTTP_401_UNAUTHORIZED),
)


def to_http_exception(exc: EngineError) -> HTTPException:
    status_code = status.HTTP_400_BAD_REQUEST
    for error_type, mapped in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status_code = mapped
            break
    return HTTPException(status_code=status_code, detail={"code": exc.code, "message": exc.message})


def handle_engine_error(exc: EngineError) -> NoReturn:
    raise to_http_exception(exc) from exc

from __future__ import annotations

import hashlib
import os

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from app.domain.errors import ConflictError, EngineError, NotFoundError, ValidationError
from app.domain.models import BootstrapAdminRequest, User, UserCreate
from app.domain.permissions import UserRole, permissions_for_role
from app.infra.db import get_engine
from app.infra.logging import get_logger

logger = get_logger("identity")


class AuthError(EngineError):
    code = "AuthError"


class IdentityService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _hash_password(self, raw_password: str) -> str:
        salt = os.getenv("PASSWORD_SALT", "asset-dev-salt")
        return hashlib.sha256(f"{salt}:{raw_password}".encode()).hexdigest()

    def _validate_new_user(self, username: str, name: str, password: str) -> None:
        if not username.strip():
            raise ValidationError("username is required")
        if not name.strip():
            raise ValidationError("name is required")
        if not password:
            raise ValidationError("password is required")

    def bootstrap_admin(self, payload: BootstrapAdminRequest) -> User:
        self._validate_new_user(payload.username, payload.name, payload.password)
        with self._session() as session:
            if session.exec(select(User)).first() is not None:
                raise ConflictError("users already initialized")
            admin = User(
                username=payload.username.strip(),
                name=payload.name.strip(),
                password_hash=self._hash_password(payload.password),
                role=UserRole.ADMIN,
            )
            session.add(admin)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("users already initialized") from exc
            session.refresh(admin)
        logger.info("bootstrap admin created", extra={"username": admin.username})
        return admin

    def create_user(self, payload: UserCreate) -> User:
        self._validate_new_user(payload.username, payload.name, payload.password)
        with self._session() as session:
            user = User(
                username=payload.username.strip(),
                name=payload.name.strip(),
                password_hash=self._hash_password(payload.password),
                role=payload.role,
                is_active=payload.is_active,
            )
            session.add(user)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("username already exists") from exc
            session.refresh(user)
        logger.info("user created", extra={"username": user.username, "role": str(user.role)})
        return user

    def list_users(self) -> list[User]:
        with self._session() as session:
            return list(session.exec(select(User).order_by(User.username)).all())

    def get_user(self, user_id: str) -> User:
        with self._session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("user not found")
            return user

    def authenticate(self, username: str, password: str) -> tuple[User, list[str]]:
        with self._session() as session:
            user = session.exec(select(User).where(User.username == username)).first()
            if user is None or user.password_hash != self._hash_password(password):
                logger.warning("login rejected", extra={"username": username})
                raise AuthError("invalid username or password")
            if not user.is_active:
                raise AuthError("user disabled")
        return user, permissions_for_role(user.role)

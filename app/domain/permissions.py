from __future__ import annotations

from enum import StrEnum
from typing import Any

PERM_WILDCARD = "*"
PERM_IDENTITY_READ = "identity.read"
PERM_IDENTITY_WRITE = "identity.write"
PERM_ASSET_READ = "asset.read"
PERM_ASSET_WRITE = "asset.write"
PERM_POOL_READ = "pool.read"
PERM_POOL_PURCHASE = "pool.purchase"
PERM_POOL_ASSIGN = "pool.assign"
PERM_RECLONE_READ = "reclone.read"
PERM_RECLONE_WRITE = "reclone.write"
PERM_LOAN_READ = "loan.read"
PERM_LOAN_REQUEST = "loan.request"
PERM_LOAN_REVIEW = "loan.review"
PERM_AUDIT_READ = "audit.read"
PERM_AUDIT_VERIFY = "audit.verify"
PERM_AUDIT_RESET = "audit.reset"


class UserRole(StrEnum):
    ADMIN = "admin"
    USER = "user"


ROLE_PERMISSIONS: dict[UserRole, list[str]] = {
    UserRole.ADMIN: [PERM_WILDCARD],
    UserRole.USER: [
        PERM_ASSET_READ,
        PERM_POOL_READ,
        PERM_RECLONE_READ,
        PERM_RECLONE_WRITE,
        PERM_LOAN_READ,
        PERM_LOAN_REQUEST,
        PERM_AUDIT_READ,
        PERM_AUDIT_VERIFY,
    ],
}


def permissions_for_role(role: UserRole | str) -> list[str]:
    try:
        return list(ROLE_PERMISSIONS[UserRole(role)])
    except ValueError:
        return []


def has_permission(claims: dict[str, Any], permission: str) -> bool:
    permissions = claims.get("permissions", [])
    if not isinstance(permissions, list):
        return False
    return permission in permissions or PERM_WILDCARD in permissions

from __future__ import annotations

from typing import Protocol

HOTO_EXEMPT_OWNERS: frozenset[str] = frozenset({"cloud office", "coc"})


class HasOwnership(Protocol):
    owner: str | None
    hoto_number: str | None


def is_hoto_exempt(owner: str | None) -> bool:
    normalized = (owner or "").strip().lower()
    return any(exempt in normalized for exempt in HOTO_EXEMPT_OWNERS)


def is_hoto_compliant(asset: HasOwnership) -> bool:
    """Advisory check: non-exempt owners need a HOTO reference number.

    Never used to reject a write; callers surface the result as a warning list.
    """
    if is_hoto_exempt(asset.owner):
        return True
    return bool((asset.hoto_number or "").strip())

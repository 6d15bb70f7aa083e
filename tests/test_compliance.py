from __future__ import annotations

from dataclasses import dataclass

import pytest

from app.domain.compliance import is_hoto_compliant, is_hoto_exempt


@dataclass
class _Asset:
    owner: str | None
    hoto_number: str | None


@pytest.mark.parametrize(
    ("owner", "hoto_number", "expected"),
    [
        ("Cloud Office", None, True),
        ("  cloud office - level 2 ", "", True),
        ("COC", None, True),
        ("Finance", None, False),
        ("Finance", "   ", False),
        ("Finance", "HOTO-42", True),
        (None, None, False),
    ],
)
def test_hoto_compliance(owner: str | None, hoto_number: str | None, expected: bool) -> None:
    assert is_hoto_compliant(_Asset(owner=owner, hoto_number=hoto_number)) is expected


def test_exemption_is_substring_match() -> None:
    assert is_hoto_exempt("Regional CoC team") is True
    assert is_hoto_exempt("Cloud") is False
    assert is_hoto_exempt(None) is False

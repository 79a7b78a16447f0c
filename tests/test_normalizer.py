from __future__ import annotations

import pytest

from core.errors import FormatError
from core.normalizer import is_format_valid, normalize_identifier, require_canonical


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("+1 (234) 567-890", "+1234567890"),
        ("0044 20 7946 0958", "+442079460958"),
        ("2345678901", "+2345678901"),
        ("12345", "12345"),
        ("bad", ""),
        ("+49-30-1234567", "+49301234567"),
    ],
)
def test_normalize_identifier(raw: str, expected: str) -> None:
    assert normalize_identifier(raw) == expected


@pytest.mark.parametrize(
    "raw",
    ["+1234567890", "00 12 345", "abc", "", "12+3456789012", "++123", "555-0100", "00", " +44 7700 900123 "],
)
def test_normalize_is_idempotent(raw: str) -> None:
    once = normalize_identifier(raw)
    assert normalize_identifier(once) == once


def test_format_boundaries() -> None:
    assert not is_format_valid("+123456")
    assert is_format_valid("+1234567")
    assert is_format_valid("+" + "1" * 15)
    assert not is_format_valid("+" + "1" * 16)


def test_format_requires_plus_prefix() -> None:
    assert not is_format_valid("1234567890")
    assert not is_format_valid("+12345678\n")


def test_require_canonical() -> None:
    assert require_canonical("0044 20 7946 0958") == "+442079460958"
    with pytest.raises(FormatError):
        require_canonical("555-0100")

"""Identifier normalization helpers (core domain)."""

from __future__ import annotations

import re

from core.errors import FormatError

CANONICAL_PATTERN = re.compile(r"\+[0-9]{7,15}")

_STRIP_PATTERN = re.compile(r"[^0-9+]")


def normalize_identifier(raw: str) -> str:
    """Normalize a raw phone number into its canonical ``+<digits>`` form.

    Everything except digits and ``+`` is dropped. Numbers without a leading
    ``+`` get one when they start with the ``00`` international prefix or are
    at least ten digits long. Shorter values are returned unprefixed and fail
    :func:`is_format_valid`.
    """

    normalized = _STRIP_PATTERN.sub("", raw)
    if normalized.startswith("+"):
        return normalized

    if normalized.startswith("00"):
        return "+" + normalized[2:]
    if len(normalized) >= 10:
        return "+" + normalized
    return normalized


def is_format_valid(canonical: str) -> bool:
    """Return True when the value is a ``+`` followed by 7 to 15 digits."""

    return CANONICAL_PATTERN.fullmatch(canonical) is not None


def require_canonical(raw: str) -> str:
    """Normalize a single identifier or raise FormatError.

    Batch paths record format failures as data; this is for callers that act
    on exactly one number and have nothing to report it in.
    """

    canonical = normalize_identifier(raw)
    if not is_format_valid(canonical):
        raise FormatError(f"Invalid phone number format: {raw!r}")
    return canonical

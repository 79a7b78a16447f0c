"""Batch classification against persisted history (core domain).

Classification is all-or-nothing: a single failed lookup aborts the batch so
callers never act on a partially classified list.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Callable, Dict, Iterable, List, Optional

from core.errors import PersistenceError
from core.models import ClassificationResult, PhoneRecord, ValidationOutcome
from core.normalizer import is_format_valid, normalize_identifier

LOGGER = logging.getLogger(__name__)

Lookup = Callable[[str], Optional[PhoneRecord]]


def resolve_identifier(raw: str, lookup: Lookup) -> ValidationOutcome:
    """Normalize, validate and look up a single raw value."""

    canonical = normalize_identifier(raw)
    if not is_format_valid(canonical):
        return ValidationOutcome(
            raw=raw,
            canonical=canonical,
            format_valid=False,
            persisted_duplicate=False,
            error="Invalid phone number format",
        )

    try:
        existing = lookup(canonical)
    except PersistenceError:
        raise
    except Exception as exc:
        raise PersistenceError(f"Lookup failed for {canonical}") from exc

    return ValidationOutcome(
        raw=raw,
        canonical=canonical,
        format_valid=True,
        persisted_duplicate=existing is not None,
        existing_record=existing,
    )


def find_intra_batch_repeats(raw_batch: List[str]) -> List[str]:
    """Return every occurrence of each raw value seen more than once.

    Values are grouped in first-seen order, so ``[a, b, a, a]`` yields
    ``[a, a, a]``.
    """

    counts = Counter(raw_batch)
    repeats: List[str] = []
    for value, count in counts.items():
        if count > 1:
            repeats.extend([value] * count)
    return repeats


def classify_batch(raw_batch: Iterable[str], lookup: Lookup) -> ClassificationResult:
    """Partition a raw batch into invalid, persisted-duplicate and new occurrences.

    Steps:
    1) Deduplicate raw values in first-seen order
    2) Collect intra-batch repeats with full multiplicity
    3) Resolve each unique value once (lookup only for valid formats)
    4) Walk the original batch, routing each occurrence to one bucket

    Within-batch repetition does not mark a value as a duplicate here; both
    signals are reported separately and the caller decides how to merge them.
    """

    batch = list(raw_batch)
    unique_input = list(dict.fromkeys(batch))

    resolved: Dict[str, ValidationOutcome] = {}
    for raw in unique_input:
        resolved[raw] = resolve_identifier(raw, lookup)

    result = ClassificationResult(
        total_input=len(batch),
        unique_input=unique_input,
        intra_batch_repeats=find_intra_batch_repeats(batch),
    )
    seen_duplicates: set[str] = set()
    seen_new: set[str] = set()

    for raw in batch:
        outcome = resolved[raw]
        result.outcomes.append(outcome)

        if not outcome.format_valid:
            result.invalid.append(raw)
        elif outcome.persisted_duplicate:
            result.duplicate_occurrences.append(raw)
            if outcome.canonical not in seen_duplicates:
                seen_duplicates.add(outcome.canonical)
                result.persisted_duplicates.append(outcome.canonical)
        else:
            result.new_occurrences.append(raw)
            if outcome.canonical not in seen_new:
                seen_new.add(outcome.canonical)
                result.unique_new.append(outcome.canonical)

    LOGGER.debug(
        "Classified batch: total=%s invalid=%s duplicates=%s new=%s",
        result.total_input,
        len(result.invalid),
        len(result.duplicate_occurrences),
        len(result.new_occurrences),
    )
    return result

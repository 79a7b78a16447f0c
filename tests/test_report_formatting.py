from __future__ import annotations

from adapters.report_formatting import (
    classification_summary,
    format_classification,
    format_dispatch,
    format_number_page,
    format_skipped,
)
from core.classifier import classify_batch
from core.models import (
    ERROR_OUTSIDE_MESSAGING_WINDOW,
    BulkDispatchSummary,
    DispatchOutcome,
    NumberPage,
    NumberStatistics,
)
from fakes import FakeStorage, make_record


def _scenario():
    storage = FakeStorage(known={"+0987654321"})
    return classify_batch(
        ["+1234567890", "bad", "+1234567890", "+0987654321"],
        storage.exists_by_canonical,
    )


def test_classification_summary_counts() -> None:
    assert classification_summary(_scenario()) == {
        "total": 4,
        "valid": 3,
        "invalid": 1,
        "duplicates": 1,
        "new": 2,
        "unique_input": 3,
        "intra_batch_duplicates": 2,
        "database_duplicates": 1,
        "unique_new": 1,
    }


def test_format_classification_lists_every_bucket() -> None:
    text = format_classification(_scenario())

    assert "Invalid:\n  bad" in text
    assert "Already in database:\n  +0987654321" in text
    assert "Repeated in this batch:\n  +1234567890" in text
    assert "New:\n  +1234567890" in text


def test_format_dispatch_keeps_outcome_order() -> None:
    summary = BulkDispatchSummary()
    summary.add(DispatchOutcome(identifier="+1111111111", success=True, external_message_id="SM1"))
    summary.add(
        DispatchOutcome(
            identifier="+2222222222",
            success=False,
            error_kind=ERROR_OUTSIDE_MESSAGING_WINDOW,
            error="outside window",
        )
    )
    summary.add(DispatchOutcome(identifier="+3333333333", success=True, external_message_id="SM3"))

    lines = format_dispatch(summary).splitlines()

    assert lines[:2] == ["Sent: 2", "Failed: 1"]
    rows = [line for line in lines if line.startswith(("OK", "FAIL"))]
    assert [row.split()[1] for row in rows] == ["+1111111111", "+2222222222", "+3333333333"]
    assert "[outside_messaging_window]" in rows[1]


def test_format_dispatch_flags_cancellation() -> None:
    summary = BulkDispatchSummary(cancelled=True)
    assert "Cancelled" in format_dispatch(summary)


def test_format_skipped_groups_by_reason() -> None:
    text = format_skipped({"invalid": ["bad"], "known": [], "repeat": ["+1111111111"]})

    assert "Skipped (invalid format): 1\n  bad" in text
    assert "Skipped (repeated in this batch): 1\n  +1111111111" in text
    assert "already in database" not in text
    assert format_skipped({"invalid": [], "known": [], "repeat": []}) == "Skipped: 0"


def test_format_number_page() -> None:
    page = NumberPage(
        records=[make_record("+1111111111")],
        page=2,
        limit=1,
        total=3,
        statistics=NumberStatistics(total=3, active=3, blocked=0, recently_sent=0),
    )

    text = format_number_page(page)

    assert text.startswith("Page 2 of 3 (3 matching numbers)")
    assert "+1111111111  [active]  sent 0x  last never" in text
    assert "Total numbers: 3" in text

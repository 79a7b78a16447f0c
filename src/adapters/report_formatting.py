"""Shared report formatting helpers.

Keeping formatting here prevents drift between commands and keeps output
consistent regardless of which command produced it.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List

from core.models import (
    BulkDispatchSummary,
    ClassificationResult,
    NumberPage,
    NumberStatistics,
    TemplateSendRecord,
)

DIVIDER = "──────────────"


def classification_summary(result: ClassificationResult) -> Dict[str, int]:
    """Return the counters shown for a validated batch."""

    return {
        "total": result.total_input,
        "valid": len(result.duplicate_occurrences) + len(result.new_occurrences),
        "invalid": len(result.invalid),
        "duplicates": len(result.duplicate_occurrences),
        "new": len(result.new_occurrences),
        "unique_input": len(result.unique_input),
        "intra_batch_duplicates": len(result.intra_batch_repeats),
        "database_duplicates": len(result.persisted_duplicates),
        "unique_new": len(result.unique_new),
    }


def _section(title: str, values: List[str]) -> List[str]:
    if not values:
        return []
    return ["", f"{title}:"] + [f"  {value}" for value in values]


def format_classification(result: ClassificationResult) -> str:
    summary = classification_summary(result)
    lines = [f"{key.replace('_', ' ').capitalize()}: {value}" for key, value in summary.items()]
    lines.extend(_section("Invalid", result.invalid))
    lines.extend(_section("Already in database", result.persisted_duplicates))
    lines.extend(_section("Repeated in this batch", list(dict.fromkeys(result.intra_batch_repeats))))
    lines.extend(_section("New", result.unique_new))
    return "\n".join(lines)


def format_dispatch(summary: BulkDispatchSummary) -> str:
    lines = [
        f"Sent: {summary.total_sent}",
        f"Failed: {summary.total_failed}",
    ]
    if summary.cancelled:
        lines.append("Cancelled before the whole batch was attempted")
    lines.append(DIVIDER)
    for outcome in summary.outcomes:
        if outcome.success:
            lines.append(f"OK    {outcome.identifier}  {outcome.external_message_id}")
        else:
            lines.append(f"FAIL  {outcome.identifier}  [{outcome.error_kind}] {outcome.error}")
    return "\n".join(lines)


def format_statistics(stats: NumberStatistics) -> str:
    return "\n".join(
        [
            f"Total numbers: {stats.total}",
            f"Active: {stats.active}",
            f"Blocked: {stats.blocked}",
            f"Sent in last 24h: {stats.recently_sent}",
        ]
    )


def format_template_history(records: List[TemplateSendRecord]) -> str:
    if not records:
        return "No template sends recorded."
    lines = []
    for record in records:
        name = record.template_name or record.template_sid
        variables = json.dumps(record.template_variables)
        lines.append(f"{record.sent_at:%Y-%m-%d %H:%M:%S}  {name} ({record.template_language})  {variables}")
    return "\n".join(lines)


def format_templates(templates: List[Dict[str, Any]]) -> str:
    if not templates:
        return "No templates found."
    return "\n".join(
        f"{item['sid']}  {item.get('friendly_name') or '-'}  [{item.get('language') or '-'}]  "
        f"{', '.join(item.get('types') or [])}"
        for item in templates
    )


def format_skipped(skipped: Dict[str, List[str]]) -> str:
    """Render identifiers left out of a send, grouped by reason."""

    labels = {
        "invalid": "Skipped (invalid format)",
        "known": "Skipped (already in database)",
        "repeat": "Skipped (repeated in this batch)",
    }
    lines: List[str] = []
    for key, label in labels.items():
        values = skipped.get(key) or []
        if values:
            lines.append(f"{label}: {len(values)}")
            lines.extend(f"  {value}" for value in values)
    return "\n".join(lines) if lines else "Skipped: 0"


def format_number_page(page: NumberPage) -> str:
    lines = [
        f"Page {page.page} of {max(page.total_pages, 1)} ({page.total} matching numbers)",
        DIVIDER,
    ]
    if not page.records:
        lines.append("No numbers found.")
    for record in page.records:
        last_sent = f"{record.last_sent_at:%Y-%m-%d %H:%M:%S}" if record.last_sent_at else "never"
        lines.append(
            f"{record.normalized_number}  [{record.status}]  sent {record.send_count}x  last {last_sent}"
        )
    lines.append(DIVIDER)
    lines.append(format_statistics(page.statistics))
    return "\n".join(lines)

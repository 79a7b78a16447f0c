"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any provider- or database-specific types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

# Dispatch error kinds recorded on failed outcomes.
ERROR_INVALID_FORMAT = "invalid_format"
ERROR_OUTSIDE_MESSAGING_WINDOW = "outside_messaging_window"
ERROR_TIMEOUT = "timeout"
ERROR_UNKNOWN = "unknown"


@dataclass(frozen=True)
class PhoneRecord:
    """Persisted history row for one canonical identifier."""

    id: int
    phone_number: str
    normalized_number: str
    created_at: datetime
    updated_at: datetime
    last_sent_at: Optional[datetime]
    send_count: int
    status: str
    metadata: Dict[str, Any]


@dataclass(frozen=True)
class TemplateSendRecord:
    """Persisted record of a single template send."""

    id: int
    phone_number_id: int
    template_sid: str
    template_name: Optional[str]
    template_language: str
    template_variables: List[str]
    sent_at: datetime
    message_sid: Optional[str]
    status: str
    metadata: Dict[str, Any]


@dataclass(frozen=True)
class NumberStatistics:
    total: int
    active: int
    blocked: int
    recently_sent: int


@dataclass(frozen=True)
class NumberPage:
    """One page of stored numbers, newest first, with pagination totals."""

    records: List[PhoneRecord]
    page: int
    limit: int
    total: int
    statistics: NumberStatistics

    @property
    def total_pages(self) -> int:
        return -(-self.total // self.limit) if self.limit else 0

    @property
    def has_next(self) -> bool:
        return self.page * self.limit < self.total

    @property
    def has_prev(self) -> bool:
        return self.page > 1


@dataclass(frozen=True)
class ValidationOutcome:
    """Resolution of one distinct raw value within a batch."""

    raw: str
    canonical: str
    format_valid: bool
    persisted_duplicate: bool
    existing_record: Optional[PhoneRecord] = None
    error: Optional[str] = None


@dataclass
class ClassificationResult:
    """Per-occurrence buckets and deduplicated summaries for one batch.

    The per-occurrence lists hold raw values in input order. The summary lists
    ``persisted_duplicates`` and ``unique_new`` hold canonical values.
    """

    total_input: int
    invalid: List[str] = field(default_factory=list)
    duplicate_occurrences: List[str] = field(default_factory=list)
    new_occurrences: List[str] = field(default_factory=list)
    outcomes: List[ValidationOutcome] = field(default_factory=list)
    unique_input: List[str] = field(default_factory=list)
    intra_batch_repeats: List[str] = field(default_factory=list)
    persisted_duplicates: List[str] = field(default_factory=list)
    unique_new: List[str] = field(default_factory=list)

    @property
    def valid(self) -> List[str]:
        """Raw values that passed format validation, in input order."""

        return [outcome.raw for outcome in self.outcomes if outcome.format_valid]

    @property
    def valid_canonical(self) -> List[str]:
        """Canonical form of every valid occurrence, in input order."""

        return [outcome.canonical for outcome in self.outcomes if outcome.format_valid]


@dataclass(frozen=True)
class FreeformMessage:
    """Plain text body, only deliverable inside the provider's session window."""

    body: str


@dataclass(frozen=True)
class TemplateMessage:
    """Pre-approved content template with ordinal variables."""

    content_sid: str
    language: str = "en"
    variables: List[str] = field(default_factory=list)
    name: Optional[str] = None


MessagePayload = Union[FreeformMessage, TemplateMessage]


@dataclass(frozen=True)
class OutboundMessage:
    """Provider-neutral message handed to the transport port."""

    body: Optional[str] = None
    content_sid: Optional[str] = None
    content_variables: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class DispatchOutcome:
    """Result of attempting one send."""

    identifier: str
    success: bool
    external_message_id: Optional[str] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None
    provider_code: Optional[str] = None


@dataclass
class BulkDispatchSummary:
    """Ordered outcomes for one dispatch call."""

    total_sent: int = 0
    total_failed: int = 0
    outcomes: List[DispatchOutcome] = field(default_factory=list)
    cancelled: bool = False

    def add(self, outcome: DispatchOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.success:
            self.total_sent += 1
        else:
            self.total_failed += 1

    @property
    def successes(self) -> List[DispatchOutcome]:
        return [outcome for outcome in self.outcomes if outcome.success]

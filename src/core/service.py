"""Bulk messaging service: the caller that wires the core pipeline together.

This module is integration-agnostic. It only relies on ports for storage and
transport, enabling other frontends (CLI today, HTTP later) without changes here.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from core.classifier import classify_batch
from core.config import RequestLimits
from core.dispatcher import Dispatcher
from core.errors import BatchValidationError
from core.history import HistoryRecorder
from core.models import (
    BulkDispatchSummary,
    ClassificationResult,
    FreeformMessage,
    MessagePayload,
    PhoneRecord,
    TemplateMessage,
)
from core.ports import StoragePort

LOGGER = logging.getLogger(__name__)


class BulkMessagingService:
    """Validate, register and send to batches of phone numbers."""

    def __init__(
        self,
        storage: StoragePort,
        dispatcher: Dispatcher,
        history: HistoryRecorder,
        limits: RequestLimits = RequestLimits(),
    ) -> None:
        self._storage = storage
        self._dispatcher = dispatcher
        self._history = history
        self._limits = limits

    async def validate_numbers(self, raw_batch: Iterable[str]) -> ClassificationResult:
        """Classify a batch against stored history.

        Raises PersistenceError if any lookup fails; no partial result is
        returned in that case.
        """

        batch = self._check_batch(raw_batch)
        return await asyncio.to_thread(classify_batch, batch, self._storage.exists_by_canonical)

    async def register_numbers(
        self,
        raw_batch: Iterable[str],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Tuple[ClassificationResult, List[PhoneRecord]]:
        """Classify a batch and store every unique new number."""

        result = await self.validate_numbers(raw_batch)
        raw_by_canonical: Dict[str, str] = {}
        for outcome in result.outcomes:
            if outcome.format_valid and not outcome.persisted_duplicate:
                raw_by_canonical.setdefault(outcome.canonical, outcome.raw)

        stored: List[PhoneRecord] = []
        for canonical in result.unique_new:
            record = await asyncio.to_thread(
                self._storage.upsert_by_canonical,
                raw_by_canonical[canonical],
                canonical,
                metadata or {},
            )
            stored.append(record)

        LOGGER.info("Registered %s new numbers (%s already known)", len(stored), len(result.persisted_duplicates))
        return result, stored

    async def send_bulk(
        self,
        identifiers: Iterable[str],
        payload: MessagePayload,
        cancel_event: Optional[asyncio.Event] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> BulkDispatchSummary:
        """Dispatch ``payload`` to every identifier, then record history.

        History recording is scheduled after dispatch returns and is never
        awaited here, so its failures cannot affect the returned summary.
        """

        batch = self._check_batch(identifiers)
        payload = self._check_payload(payload)

        summary = await self._dispatcher.dispatch(batch, payload, cancel_event=cancel_event)
        self._history.record(summary, payload, metadata)
        return summary

    def _check_batch(self, raw_batch: Iterable[str]) -> List[str]:
        batch = list(raw_batch)
        if not batch:
            raise BatchValidationError("Phone numbers list is required and cannot be empty")
        if len(batch) > self._limits.max_batch_size:
            raise BatchValidationError(
                f"Maximum {self._limits.max_batch_size} phone numbers allowed per request"
            )
        return batch

    def _check_payload(self, payload: MessagePayload) -> MessagePayload:
        if isinstance(payload, TemplateMessage):
            if not payload.content_sid.strip():
                raise BatchValidationError("Template content SID is required")
            return payload

        if isinstance(payload, FreeformMessage):
            # Length is checked on the body as submitted, before trimming.
            if len(payload.body) > self._limits.max_message_length:
                raise BatchValidationError(
                    f"Message is too long. Maximum length is {self._limits.max_message_length} characters."
                )
            body = payload.body.strip()
            if not body:
                raise BatchValidationError("Message is required and cannot be empty")
            return FreeformMessage(body=body)

        raise BatchValidationError("Either a message or a template must be provided")

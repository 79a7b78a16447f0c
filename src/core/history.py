"""Best-effort send history bookkeeping.

Recording runs as a detached task after a dispatch has returned. Nothing in
here can raise back into the dispatch path: storage failures are logged and
dropped, never retried.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from core.models import BulkDispatchSummary, DispatchOutcome, MessagePayload, TemplateMessage
from core.ports import StoragePort

LOGGER = logging.getLogger(__name__)


class HistoryRecorder:
    """Update send counters and template logs for successful outcomes."""

    def __init__(self, storage: StoragePort) -> None:
        self._storage = storage
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def record(
        self,
        summary: BulkDispatchSummary,
        payload: MessagePayload,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[asyncio.Task]:
        """Schedule history updates for ``summary`` and return immediately."""

        successes = summary.successes
        if not successes:
            return None

        task = asyncio.get_running_loop().create_task(self._record_all(successes, payload, metadata or {}))
        # Keep a strong reference until the task finishes.
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every scheduled recording task to finish."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _record_all(
        self,
        successes: list[DispatchOutcome],
        payload: MessagePayload,
        metadata: Dict[str, Any],
    ) -> None:
        for outcome in successes:
            try:
                await asyncio.to_thread(self._record_one, outcome, payload, metadata)
            except Exception:
                LOGGER.exception("Failed to record send history for %s", outcome.identifier)

    def _record_one(self, outcome: DispatchOutcome, payload: MessagePayload, metadata: Dict[str, Any]) -> None:
        self._storage.increment_send_counters(outcome.identifier)

        if not isinstance(payload, TemplateMessage):
            return

        template_metadata = dict(metadata)
        template_metadata.setdefault("template_language", payload.language)
        if payload.name:
            template_metadata.setdefault("template_name", payload.name)
        record = self._storage.append_template_send_record(
            outcome.identifier,
            payload.content_sid,
            list(payload.variables),
            outcome.external_message_id,
            template_metadata,
        )
        if record is None:
            LOGGER.warning("Template send for %s not recorded: number is not stored", outcome.identifier)

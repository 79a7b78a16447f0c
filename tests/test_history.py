from __future__ import annotations

import asyncio
import logging

from core.history import HistoryRecorder
from core.models import BulkDispatchSummary, DispatchOutcome, FreeformMessage, TemplateMessage
from fakes import FakeStorage


def _summary() -> BulkDispatchSummary:
    summary = BulkDispatchSummary()
    summary.add(DispatchOutcome(identifier="+1111111111", success=True, external_message_id="SM1"))
    summary.add(DispatchOutcome(identifier="+2222222222", success=False, error_kind="unknown"))
    summary.add(DispatchOutcome(identifier="+3333333333", success=True, external_message_id="SM3"))
    return summary


def test_records_only_successful_sends() -> None:
    storage = FakeStorage()
    recorder = HistoryRecorder(storage)

    async def run() -> None:
        recorder.record(_summary(), FreeformMessage("hi"))
        await recorder.drain()

    asyncio.run(run())

    assert storage.increments == ["+1111111111", "+3333333333"]
    assert storage.template_sends == []
    assert recorder.pending == 0


def test_template_sends_are_logged_with_language_and_name() -> None:
    storage = FakeStorage()
    recorder = HistoryRecorder(storage)
    payload = TemplateMessage(content_sid="HX9", language="es", variables=["Ana"], name="welcome")

    async def run() -> None:
        recorder.record(_summary(), payload, {"campaign": "spring"})
        await recorder.drain()

    asyncio.run(run())

    canonical, sid, variables, message_sid, metadata = storage.template_sends[0]
    assert (canonical, sid, variables, message_sid) == ("+1111111111", "HX9", ["Ana"], "SM1")
    assert metadata == {"campaign": "spring", "template_language": "es", "template_name": "welcome"}
    assert len(storage.template_sends) == 2


def test_storage_failures_are_logged_not_raised(caplog) -> None:
    storage = FakeStorage(fail_on={"+1111111111"})
    recorder = HistoryRecorder(storage)

    async def run() -> None:
        task = recorder.record(_summary(), FreeformMessage("hi"))
        await recorder.drain()
        assert task is not None and task.exception() is None

    with caplog.at_level(logging.ERROR, logger="core.history"):
        asyncio.run(run())

    assert storage.increments == ["+3333333333"]
    assert "Failed to record send history for +1111111111" in caplog.text


def test_nothing_scheduled_without_successes() -> None:
    recorder = HistoryRecorder(FakeStorage())
    summary = BulkDispatchSummary()
    summary.add(DispatchOutcome(identifier="+1", success=False, error_kind="invalid_format"))

    async def run():
        return recorder.record(summary, FreeformMessage("hi"))

    assert asyncio.run(run()) is None

from __future__ import annotations

import argparse
import logging

import pytest

import app
from adapters.sqlite_storage import SQLiteStorage
from core.classifier import classify_batch
from core.errors import TransportError
from fakes import FakeStorage

BATCH = ["+1111111111", "+1111111111", "bad", "+2222222222"]


def _classified():
    storage = FakeStorage(known={"+2222222222"})
    return classify_batch(BATCH, storage.exists_by_canonical)


def _args(**overrides) -> argparse.Namespace:
    values = {"skip_known": False, "allow_repeats": False}
    values.update(overrides)
    return argparse.Namespace(**values)


def _accounted(targets, skipped) -> int:
    return len(targets) + sum(len(values) for values in skipped.values())


def test_select_targets_reports_repeats_and_invalid_by_default() -> None:
    targets, skipped = app._select_targets(_args(), _classified())

    assert targets == ["+1111111111", "+2222222222"]
    assert skipped == {"invalid": ["bad"], "known": [], "repeat": ["+1111111111"]}
    assert _accounted(targets, skipped) == len(BATCH)


def test_select_targets_skip_known() -> None:
    targets, skipped = app._select_targets(_args(skip_known=True), _classified())

    assert targets == ["+1111111111"]
    assert skipped["known"] == ["+2222222222"]
    assert _accounted(targets, skipped) == len(BATCH)


def test_select_targets_allow_repeats() -> None:
    targets, skipped = app._select_targets(_args(allow_repeats=True, skip_known=True), _classified())

    assert targets == ["+1111111111", "+1111111111"]
    assert skipped == {"invalid": ["bad"], "known": ["+2222222222"], "repeat": []}


@pytest.fixture
def quiet_main(monkeypatch, tmp_path) -> SQLiteStorage:
    storage = SQLiteStorage(str(tmp_path / "fanout.db"))
    storage.init_db()
    monkeypatch.setattr(app, "_print_banner", lambda: None)
    monkeypatch.setattr(app, "_configure_logging", lambda: None)
    monkeypatch.setattr(app, "_build_storage", lambda: storage)
    return storage


class _FailingTransport:
    async def list_templates(self):
        raise TransportError("Authenticate", code="20003", status=401)


def test_main_reports_transport_errors(monkeypatch, caplog, quiet_main) -> None:
    monkeypatch.setattr(app, "build_transport", lambda: _FailingTransport())

    with caplog.at_level(logging.ERROR, logger="app"):
        with pytest.raises(SystemExit) as excinfo:
            app.main(["templates"])

    assert excinfo.value.code == 1
    assert "Fatal error while running templates" in caplog.text


def test_main_rejects_malformed_history_number(capsys, quiet_main) -> None:
    with pytest.raises(SystemExit) as excinfo:
        app.main(["history", "bad"])

    assert excinfo.value.code == 1
    assert "Invalid phone number format" in capsys.readouterr().err


def test_list_command_prints_stored_numbers(capsys, quiet_main) -> None:
    quiet_main.upsert_by_canonical("+1111111111", "+1111111111", {})
    quiet_main.upsert_by_canonical("+2222222222", "+2222222222", {})

    with pytest.raises(SystemExit) as excinfo:
        app.main(["list", "--search", "2222"])

    out = capsys.readouterr().out
    assert excinfo.value.code == 0
    assert "+2222222222" in out
    assert "+1111111111  [" not in out
    assert "(1 matching numbers)" in out

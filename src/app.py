"""Application entry point for the fanout bulk sender."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from logging.handlers import RotatingFileHandler
from typing import Dict, List, Optional, Tuple

from art import tprint
from dotenv import load_dotenv

import settings
from adapters.report_formatting import (
    format_classification,
    format_dispatch,
    format_number_page,
    format_skipped,
    format_statistics,
    format_template_history,
    format_templates,
)
from adapters.sqlite_storage import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, SQLiteStorage
from client import build_transport
from core.config import RateLimitConfig, RequestLimits
from core.dispatcher import Dispatcher
from core.errors import (
    BatchValidationError,
    ConfigurationError,
    FormatError,
    PersistenceError,
    TransportError,
)
from core.history import HistoryRecorder
from core.models import FreeformMessage, MessagePayload, TemplateMessage
from core.normalizer import require_canonical
from core.rate_gate import build_rate_gates, run_periodic_cleanup
from core.service import BulkMessagingService

NAME = "FANOUT"
FONT = "tarty-1"

LOGGER = logging.getLogger(__name__)


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = []
    for name in redact_cfg.get("patterns", []):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    load_dotenv()
    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    secrets = _collect_redaction_values(config)
    formatter = _RedactingFormatter(secrets, fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/fanout.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        max_bytes = int(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        backup_count = int(file_cfg.get("backup_count", 5))
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _read_numbers(args: argparse.Namespace) -> List[str]:
    """Collect numbers from positional args and/or a file (one per line)."""

    numbers = list(args.numbers or [])
    if args.file:
        with open(args.file, "r", encoding="utf-8") as handle:
            for line in handle:
                value = line.strip()
                if value and not value.startswith("#"):
                    numbers.append(value)
    return numbers


def _build_storage() -> SQLiteStorage:
    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()
    return storage


def _request_limits() -> RequestLimits:
    return RequestLimits(
        max_batch_size=settings.MAX_BATCH_SIZE,
        max_message_length=settings.MAX_MESSAGE_LENGTH,
    )


def _build_service(storage: SQLiteStorage, transport=None) -> tuple[BulkMessagingService, HistoryRecorder, list]:
    rate_gates = build_rate_gates(
        RateLimitConfig(max_requests=settings.RATE_LIMIT_PER_SECOND, window_seconds=1.0),
        RateLimitConfig(max_requests=settings.RATE_LIMIT_PER_MINUTE, window_seconds=60.0),
    )
    dispatcher = Dispatcher(
        transport=transport,
        rate_gates=rate_gates,
        sender=getattr(transport, "from_number", ""),
        scope=settings.DISPATCH_SCOPE,
        send_timeout_seconds=settings.SEND_TIMEOUT_SECONDS,
    )
    history = HistoryRecorder(storage)
    service = BulkMessagingService(storage, dispatcher, history, _request_limits())
    return service, history, rate_gates


def _payload_from_args(args: argparse.Namespace) -> MessagePayload:
    if args.template:
        return TemplateMessage(
            content_sid=args.template,
            language=args.language,
            variables=list(args.var or []),
            name=args.template_name,
        )
    return FreeformMessage(body=args.message or "")


async def _validate(args: argparse.Namespace) -> int:
    storage = _build_storage()
    service, _, _ = _build_service(storage)
    result = await service.validate_numbers(_read_numbers(args))
    print(format_classification(result))
    return 0


async def _register(args: argparse.Namespace) -> int:
    storage = _build_storage()
    service, _, _ = _build_service(storage)
    metadata = {"source": args.source} if args.source else {}
    result, stored = await service.register_numbers(_read_numbers(args), metadata)
    print(format_classification(result))
    print(f"\nStored {len(stored)} new numbers")
    return 0


def _select_targets(args: argparse.Namespace, result) -> Tuple[List[str], Dict[str, List[str]]]:
    """Pick send targets from a classification.

    Repeats inside the batch and numbers already in the database are two
    separate signals; each has its own flag. Every occurrence that is not a
    target is returned under the reason it was skipped.
    """

    targets: List[str] = []
    skipped: Dict[str, List[str]] = {"invalid": [], "known": [], "repeat": []}
    seen: set[str] = set()
    for outcome in result.outcomes:
        if not outcome.format_valid:
            skipped["invalid"].append(outcome.raw)
            continue
        if args.skip_known and outcome.persisted_duplicate:
            skipped["known"].append(outcome.raw)
            continue
        if not args.allow_repeats and outcome.canonical in seen:
            skipped["repeat"].append(outcome.raw)
            continue
        seen.add(outcome.canonical)
        targets.append(outcome.canonical)
    return targets, skipped


async def _send(args: argparse.Namespace) -> int:
    storage = _build_storage()
    transport = build_transport()
    service, history, rate_gates = _build_service(storage, transport)
    payload = _payload_from_args(args)

    result, stored = await service.register_numbers(_read_numbers(args), {"source": "send"})
    if result.invalid:
        LOGGER.warning("Skipping %s invalid numbers", len(result.invalid))
    if stored:
        LOGGER.info("Stored %s new numbers before sending", len(stored))

    targets, skipped = _select_targets(args, result)
    print(format_classification(result))
    print()
    print(format_skipped(skipped))
    print()
    if not targets:
        print("Nothing to send.")
        return 1

    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        # Ctrl+C stops after the current number and keeps outcomes so far.
        # The handler stays installed until the send ends, so repeats are no-ops.
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
    except (NotImplementedError, RuntimeError):
        pass

    cleanup_task = asyncio.create_task(
        run_periodic_cleanup(rate_gates, settings.RATE_LIMIT_CLEANUP_INTERVAL_SECONDS)
    )
    try:
        summary = await service.send_bulk(targets, payload, cancel_event=cancel_event)
    finally:
        cleanup_task.cancel()
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass

    print(format_dispatch(summary))
    await history.drain()
    return 0 if summary.total_failed == 0 and not summary.cancelled else 2


async def _stats(args: argparse.Namespace) -> int:
    storage = _build_storage()
    print(format_statistics(storage.get_statistics()))
    return 0


async def _list(args: argparse.Namespace) -> int:
    storage = _build_storage()
    page = storage.list_numbers(page=args.page, limit=args.limit, status=args.status, search=args.search or "")
    print(format_number_page(page))
    return 0


async def _history(args: argparse.Namespace) -> int:
    storage = _build_storage()
    canonical = require_canonical(args.number)
    print(format_template_history(storage.get_template_send_history(canonical)))
    return 0


async def _forget(args: argparse.Namespace) -> int:
    storage = _build_storage()
    if args.all:
        removed = storage.clear_numbers()
    else:
        removed = storage.delete_numbers([require_canonical(number) for number in _read_numbers(args)])
    print(f"Removed {removed} phone numbers from the database")
    return 0


async def _templates(args: argparse.Namespace) -> int:
    transport = build_transport()
    print(format_templates(await transport.list_templates()))
    return 0


async def _check(args: argparse.Namespace) -> int:
    transport = build_transport()
    if await transport.validate_credentials():
        print("Twilio credentials are valid.")
        return 0
    print("Twilio credentials are invalid.")
    return 1


def _add_number_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("numbers", nargs="*", help="Phone numbers")
    parser.add_argument("-f", "--file", help="Text file with one phone number per line")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fanout")
    subparsers = parser.add_subparsers(dest="command", required=True)

    validate = subparsers.add_parser("validate", help="Check numbers for format errors and duplicates")
    _add_number_args(validate)

    register = subparsers.add_parser("register", help="Store new numbers in the database")
    _add_number_args(register)
    register.add_argument("--source", help="Tag stored in the number metadata")

    send = subparsers.add_parser("send", help="Send a WhatsApp message to a batch of numbers")
    _add_number_args(send)
    content = send.add_mutually_exclusive_group(required=True)
    content.add_argument("-m", "--message", help="Freeform message body")
    content.add_argument("-t", "--template", help="Content template SID (HX...)")
    send.add_argument("--language", default="en", help="Template language")
    send.add_argument("--template-name", help="Human-readable template name for history")
    send.add_argument("--var", action="append", help="Template variable, in placeholder order")
    send.add_argument("--skip-known", action="store_true", help="Skip numbers already in the database")
    send.add_argument("--allow-repeats", action="store_true", help="Send once per occurrence in the batch")

    subparsers.add_parser("stats", help="Show stored number statistics")

    listing = subparsers.add_parser("list", help="List stored numbers, newest first")
    listing.add_argument("--page", type=int, default=1)
    listing.add_argument("--limit", type=int, default=DEFAULT_PAGE_SIZE, help=f"Max {MAX_PAGE_SIZE}")
    listing.add_argument("--status", default="all", help="active, blocked, invalid or all")
    listing.add_argument("--search", help="Substring of the raw or normalized number")

    history = subparsers.add_parser("history", help="Show template sends for a number")
    history.add_argument("number")

    forget = subparsers.add_parser("forget", help="Delete stored numbers and their template history")
    _add_number_args(forget)
    forget.add_argument("--all", action="store_true", help="Delete every stored number")

    subparsers.add_parser("templates", help="List approved content templates")
    subparsers.add_parser("check", help="Validate Twilio credentials")
    return parser


_COMMANDS = {
    "validate": _validate,
    "register": _register,
    "send": _send,
    "stats": _stats,
    "list": _list,
    "history": _history,
    "forget": _forget,
    "templates": _templates,
    "check": _check,
}


def main(argv: Optional[list[str]] = None) -> None:
    args = _build_parser().parse_args(argv)
    _print_banner()
    _configure_logging()

    try:
        code = asyncio.run(_COMMANDS[args.command](args))
    except (BatchValidationError, FormatError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        code = 1
    except (ConfigurationError, PersistenceError, TransportError):
        LOGGER.exception("Fatal error while running %s", args.command)
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()

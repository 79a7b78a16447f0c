"""SQLite storage adapter.

Implements the core StoragePort using a simple SQLite database, plus the
read-only reporting queries used by the CLI.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from core.errors import PersistenceError
from core.models import NumberPage, NumberStatistics, PhoneRecord, TemplateSendRecord

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the StoragePort contract."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _execute(self, sql: str, params: Iterable[Any] = ()) -> List[sqlite3.Row]:
        # One short-lived connection per operation keeps the adapter safe to
        # call from worker threads.
        try:
            conn = self._connect()
            try:
                with conn:
                    return conn.execute(sql, tuple(params)).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Database error: {exc}") from exc

    def _write(self, sql: str, params: Iterable[Any] = ()) -> sqlite3.Cursor:
        try:
            conn = self._connect()
            try:
                with conn:
                    return conn.execute(sql, tuple(params))
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Database error: {exc}") from exc

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - phone_numbers: one row per canonical number with send counters
        - template_sends: append-only log of template messages per number
        """

        try:
            conn = self._connect()
            try:
                with conn:
                    # phone_numbers is keyed on normalized_number so the upsert
                    # below is atomic for concurrent writers of the same number.
                    # Fields:
                    # - phone_number: raw value as first submitted
                    # - normalized_number: canonical +<digits> form (UNIQUE)
                    # - last_sent_at/send_count: updated after successful sends
                    # - status: active, blocked or invalid
                    # - metadata: JSON blob supplied by the caller
                    conn.execute(
                        """
                        CREATE TABLE IF NOT EXISTS phone_numbers (
                            id INTEGER PRIMARY KEY AUTOINCREMENT,
                            phone_number TEXT NOT NULL,
                            normalized_number TEXT NOT NULL UNIQUE,
                            created_at TIMESTAMP NOT NULL,
                            updated_at TIMESTAMP NOT NULL,
                            last_sent_at TIMESTAMP,
                            send_count INTEGER NOT NULL DEFAULT 0,
                            status TEXT NOT NULL DEFAULT 'active',
                            metadata TEXT NOT NULL DEFAULT '{}'
                        )
                        """
                    )
                    # template_sends records which template went to which number,
                    # so operators can avoid re-sending the same template.
                    conn.execute(
                        """
                        CREATE TABLE IF NOT EXISTS template_sends (
                            id INTEGER PRIMARY KEY AUTOINCREMENT,
                            phone_number_id INTEGER NOT NULL
                                REFERENCES phone_numbers(id) ON DELETE CASCADE,
                            template_sid TEXT NOT NULL,
                            template_name TEXT,
                            template_language TEXT NOT NULL DEFAULT 'en',
                            template_variables TEXT NOT NULL DEFAULT '[]',
                            sent_at TIMESTAMP NOT NULL,
                            message_sid TEXT,
                            status TEXT NOT NULL DEFAULT 'sent',
                            metadata TEXT NOT NULL DEFAULT '{}'
                        )
                        """
                    )
                    for statement in (
                        "CREATE INDEX IF NOT EXISTS idx_phone_numbers_last_sent_at ON phone_numbers(last_sent_at)",
                        "CREATE INDEX IF NOT EXISTS idx_phone_numbers_status ON phone_numbers(status)",
                        "CREATE INDEX IF NOT EXISTS idx_template_sends_phone_number_id ON template_sends(phone_number_id)",
                        "CREATE INDEX IF NOT EXISTS idx_template_sends_template_sid ON template_sends(template_sid)",
                    ):
                        conn.execute(statement)
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to initialize database: {exc}") from exc

    def exists_by_canonical(self, canonical: str) -> Optional[PhoneRecord]:
        """Return the stored record for a canonical number, if any."""

        rows = self._execute("SELECT * FROM phone_numbers WHERE normalized_number = ?", (canonical,))
        return _phone_record(rows[0]) if rows else None

    def upsert_by_canonical(self, raw: str, canonical: str, metadata: Dict[str, Any]) -> PhoneRecord:
        """Insert a number or refresh its metadata if it already exists."""

        now = _utcnow()
        self._write(
            """
            INSERT INTO phone_numbers (phone_number, normalized_number, created_at, updated_at, metadata)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(normalized_number) DO UPDATE SET
                updated_at = excluded.updated_at,
                metadata = excluded.metadata
            """,
            (raw, canonical, now, now, json.dumps(metadata)),
        )
        record = self.exists_by_canonical(canonical)
        if record is None:
            raise PersistenceError(f"Upsert did not persist {canonical}")
        return record

    def increment_send_counters(self, canonical: str) -> None:
        """Bump send_count and last_sent_at for a stored number."""

        now = _utcnow()
        self._write(
            """
            UPDATE phone_numbers
            SET last_sent_at = ?, send_count = send_count + 1, updated_at = ?
            WHERE normalized_number = ?
            """,
            (now, now, canonical),
        )

    def append_template_send_record(
        self,
        canonical: str,
        template_sid: str,
        variables: List[str],
        message_sid: Optional[str],
        metadata: Dict[str, Any],
    ) -> Optional[TemplateSendRecord]:
        """Log a template send; returns None when the number is not stored.

        ``template_name`` and ``template_language`` are lifted out of the
        metadata into their own columns.
        """

        phone = self.exists_by_canonical(canonical)
        if phone is None:
            return None

        extra = dict(metadata)
        template_name = extra.pop("template_name", None)
        template_language = extra.pop("template_language", "en")
        cursor = self._write(
            """
            INSERT INTO template_sends (
                phone_number_id,
                template_sid,
                template_name,
                template_language,
                template_variables,
                sent_at,
                message_sid,
                metadata
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                phone.id,
                template_sid,
                template_name,
                template_language,
                json.dumps(list(variables)),
                _utcnow(),
                message_sid,
                json.dumps(extra),
            ),
        )
        rows = self._execute("SELECT * FROM template_sends WHERE id = ?", (cursor.lastrowid,))
        return _template_record(rows[0]) if rows else None

    def get_statistics(self) -> NumberStatistics:
        """Return totals by status plus numbers sent to in the last 24 hours."""

        cutoff = (datetime.now(timezone.utc) - timedelta(hours=24)).isoformat()
        row = self._execute(
            """
            SELECT
                COUNT(*) AS total,
                COALESCE(SUM(CASE WHEN status = 'active' THEN 1 ELSE 0 END), 0) AS active,
                COALESCE(SUM(CASE WHEN status = 'blocked' THEN 1 ELSE 0 END), 0) AS blocked,
                COALESCE(SUM(CASE WHEN last_sent_at > ? THEN 1 ELSE 0 END), 0) AS recently_sent
            FROM phone_numbers
            """,
            (cutoff,),
        )[0]
        return NumberStatistics(
            total=int(row["total"]),
            active=int(row["active"]),
            blocked=int(row["blocked"]),
            recently_sent=int(row["recently_sent"]),
        )

    def list_numbers(
        self,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        status: str = "all",
        search: str = "",
    ) -> NumberPage:
        """Return one page of stored numbers, newest first.

        ``limit`` is capped at MAX_PAGE_SIZE. ``status="all"`` disables the
        status filter; ``search`` matches the raw or the canonical number.
        """

        page = max(1, page)
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        clauses: List[str] = []
        params: List[Any] = []
        if status and status != "all":
            clauses.append("status = ?")
            params.append(status)
        if search:
            clauses.append("(phone_number LIKE ? OR normalized_number LIKE ?)")
            params.extend([f"%{search}%", f"%{search}%"])
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        total = int(self._execute(f"SELECT COUNT(*) AS total FROM phone_numbers {where}", params)[0]["total"])
        rows = self._execute(
            f"""
            SELECT * FROM phone_numbers
            {where}
            ORDER BY created_at DESC, id DESC
            LIMIT ? OFFSET ?
            """,
            params + [limit, (page - 1) * limit],
        )
        return NumberPage(
            records=[_phone_record(row) for row in rows],
            page=page,
            limit=limit,
            total=total,
            statistics=self.get_statistics(),
        )

    def has_received_template(self, canonical: str, template_sid: str) -> bool:
        rows = self._execute(
            """
            SELECT 1
            FROM template_sends ts
            JOIN phone_numbers pn ON ts.phone_number_id = pn.id
            WHERE pn.normalized_number = ? AND ts.template_sid = ?
            LIMIT 1
            """,
            (canonical, template_sid),
        )
        return bool(rows)

    def get_template_send_history(self, canonical: str) -> List[TemplateSendRecord]:
        """Return template sends for a number, newest first."""

        rows = self._execute(
            """
            SELECT ts.*
            FROM template_sends ts
            JOIN phone_numbers pn ON ts.phone_number_id = pn.id
            WHERE pn.normalized_number = ?
            ORDER BY ts.sent_at DESC, ts.id DESC
            """,
            (canonical,),
        )
        return [_template_record(row) for row in rows]

    def get_numbers_with_template(self, template_sid: str) -> List[Dict[str, Any]]:
        rows = self._execute(
            """
            SELECT pn.normalized_number, ts.sent_at, ts.template_variables
            FROM template_sends ts
            JOIN phone_numbers pn ON ts.phone_number_id = pn.id
            WHERE ts.template_sid = ?
            ORDER BY ts.sent_at DESC, ts.id DESC
            """,
            (template_sid,),
        )
        return [
            {
                "phone_number": row["normalized_number"],
                "sent_at": _parse_ts(row["sent_at"]),
                "template_variables": json.loads(row["template_variables"] or "[]"),
            }
            for row in rows
        ]

    def delete_numbers(self, canonicals: Iterable[str]) -> int:
        """Delete the given numbers (and their template logs); return rows removed."""

        values = list(canonicals)
        if not values:
            return 0
        placeholders = ", ".join("?" for _ in values)
        cursor = self._write(
            f"DELETE FROM phone_numbers WHERE normalized_number IN ({placeholders})",
            values,
        )
        return cursor.rowcount

    def clear_numbers(self) -> int:
        return self._write("DELETE FROM phone_numbers").rowcount


def _phone_record(row: sqlite3.Row) -> PhoneRecord:
    return PhoneRecord(
        id=int(row["id"]),
        phone_number=row["phone_number"],
        normalized_number=row["normalized_number"],
        created_at=_parse_ts(row["created_at"]),
        updated_at=_parse_ts(row["updated_at"]),
        last_sent_at=_parse_ts(row["last_sent_at"]),
        send_count=int(row["send_count"]),
        status=row["status"],
        metadata=json.loads(row["metadata"] or "{}"),
    )


def _template_record(row: sqlite3.Row) -> TemplateSendRecord:
    return TemplateSendRecord(
        id=int(row["id"]),
        phone_number_id=int(row["phone_number_id"]),
        template_sid=row["template_sid"],
        template_name=row["template_name"],
        template_language=row["template_language"],
        template_variables=json.loads(row["template_variables"] or "[]"),
        sent_at=_parse_ts(row["sent_at"]),
        message_sid=row["message_sid"],
        status=row["status"],
        metadata=json.loads(row["metadata"] or "{}"),
    )

"""SQLite storage adapter.

Implements the core StoragePort using a simple SQLite database.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
import json
import sqlite3
from typing import Iterator, List, Optional

from core.errors import PersistenceError
from core.models import ClassificationMethod, Message


def _to_millis(ts: datetime) -> int:
    return int(ts.timestamp() * 1000)


def _from_millis(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the StoragePort contract.

    Every sqlite3 failure is re-raised as PersistenceError so the pipeline can
    apply its log-and-drop policy without knowing about SQLite.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self._db_path)
            conn.row_factory = sqlite3.Row
            try:
                with conn:
                    yield conn
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise PersistenceError(f"sqlite failure on {self._db_path}: {exc}") from exc

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - messages: every classified message, one row per message id
        """

        with self._connect() as conn:
            # messages is the log the daily digest is computed from.
            # Fields:
            # - id: message id assigned at parse time (PRIMARY KEY)
            # - group_name / sender / content: parsed event text
            # - received_at: ingestion time in epoch milliseconds
            # - is_important / importance_score / method: classification
            # - matched_keywords: JSON list of matched rule keywords
            # - reason: human-readable classification explanation
            # - notified: 0 until the alert went out, then 1 forever
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS messages (
                    id TEXT PRIMARY KEY,
                    group_name TEXT NOT NULL,
                    sender TEXT NOT NULL,
                    content TEXT NOT NULL,
                    received_at INTEGER NOT NULL,
                    is_important INTEGER NOT NULL DEFAULT 0,
                    importance_score REAL NOT NULL DEFAULT 0,
                    method TEXT NOT NULL,
                    matched_keywords TEXT NOT NULL DEFAULT '[]',
                    reason TEXT NOT NULL DEFAULT '',
                    notified INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_messages_important_time
                ON messages (is_important, received_at)
                """
            )

    def append(self, message: Message) -> None:
        """Insert a message; a repeated id never resets ``notified``."""

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO messages (
                    id,
                    group_name,
                    sender,
                    content,
                    received_at,
                    is_important,
                    importance_score,
                    method,
                    matched_keywords,
                    reason,
                    notified
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET notified = MAX(notified, excluded.notified)
                """,
                (
                    message.id,
                    message.group,
                    message.sender,
                    message.content,
                    _to_millis(message.received_at),
                    int(message.is_important),
                    message.importance_score,
                    message.method.value,
                    json.dumps(list(message.matched_keywords), ensure_ascii=False),
                    message.reason,
                    int(message.notified),
                ),
            )

    def mark_notified(self, message_id: str) -> None:
        """Flip ``notified`` to 1; a second call is a no-op."""

        with self._connect() as conn:
            conn.execute(
                "UPDATE messages SET notified = 1 WHERE id = ? AND notified = 0",
                (message_id,),
            )

    def get(self, message_id: str) -> Optional[Message]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM messages WHERE id = ?", (message_id,)).fetchone()
        return self._row_to_message(row) if row else None

    def query_important(self, from_ts: datetime, to_ts: datetime) -> List[Message]:
        """Return important messages with ``from_ts <= received_at < to_ts``, oldest first.

        A single SELECT gives a consistent snapshot even while ingestion keeps
        writing.
        """

        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM messages
                WHERE is_important = 1 AND received_at >= ? AND received_at < ?
                ORDER BY received_at, rowid
                """,
                (_to_millis(from_ts), _to_millis(to_ts)),
            ).fetchall()
        return [self._row_to_message(row) for row in rows]

    def delete_older_than(self, ts: datetime) -> int:
        """Delete messages received before ``ts`` and return the number removed."""

        with self._connect() as conn:
            cur = conn.execute("DELETE FROM messages WHERE received_at < ?", (_to_millis(ts),))
            return cur.rowcount

    def delete_all(self) -> int:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM messages")
            return cur.rowcount

    def count(self) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) AS n FROM messages").fetchone()
        return int(row["n"])

    def count_important(self) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) AS n FROM messages WHERE is_important = 1").fetchone()
        return int(row["n"])

    @staticmethod
    def _row_to_message(row: sqlite3.Row) -> Message:
        return Message(
            id=row["id"],
            group=row["group_name"],
            sender=row["sender"],
            content=row["content"],
            received_at=_from_millis(row["received_at"]),
            is_important=bool(row["is_important"]),
            importance_score=float(row["importance_score"]),
            method=ClassificationMethod(row["method"]),
            matched_keywords=tuple(json.loads(row["matched_keywords"])),
            reason=row["reason"],
            notified=bool(row["notified"]),
        )

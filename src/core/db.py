"""SQLite persistence helpers."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from src.models.message import PrivateMessage


class MessageStoreError(RuntimeError):
    """Raised when a stored message cannot be read or changed."""


def to_db_timestamp(value: datetime) -> str:
    # Fixed-width UTC text keeps lexical order equal to time order.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


class MessageStore:
    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def _conn(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn
            conn.commit()
        finally:
            conn.close()

    def apply_schema(self, schema_sql: str) -> None:
        with self._conn() as conn:
            conn.executescript(schema_sql)

    def insert_message(self, message: PrivateMessage) -> None:
        with self._conn() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO messages (
                        message_id, kind, author_id, subject, body, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        message.message_id,
                        message.kind,
                        message.author_id,
                        message.subject,
                        message.body,
                        to_db_timestamp(message.created_at),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise MessageStoreError(f"message already exists: {message.message_id}") from exc
            conn.executemany(
                "INSERT INTO message_recipients (message_id, recipient_id) VALUES (?, ?)",
                [(message.message_id, rid) for rid in message.recipient_ids],
            )

    def get_message(self, message_id: str) -> Optional[PrivateMessage]:
        with self._conn() as conn:
            row = conn.execute(
                """
                SELECT message_id, kind, author_id, subject, body, created_at
                FROM messages WHERE message_id = ?
                """,
                (message_id,),
            ).fetchone()
            if row is None:
                return None
            recipients = conn.execute(
                "SELECT recipient_id FROM message_recipients WHERE message_id = ? ORDER BY recipient_id",
                (message_id,),
            ).fetchall()
        return PrivateMessage(
            message_id=row["message_id"],
            kind=row["kind"],
            author_id=row["author_id"],
            recipient_ids=[int(r["recipient_id"]) for r in recipients],
            subject=row["subject"],
            body=row["body"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def delete_message(self, message_id: str) -> None:
        with self._conn() as conn:
            cur = conn.execute("DELETE FROM messages WHERE message_id = ?", (message_id,))
            if cur.rowcount == 0:
                raise MessageStoreError(f"message not found: {message_id}")

    def count_created_since(self, user_id: int, kind: str, since: datetime) -> int:
        with self._conn() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS n FROM messages
                WHERE author_id = ? AND kind = ? AND created_at > ?
                """,
                (user_id, kind, to_db_timestamp(since)),
            ).fetchone()
        return int(row["n"])

    def list_messages_for_user(self, user_id: int, limit: int = 20) -> list[sqlite3.Row]:
        safe_limit = max(1, min(int(limit), 50))
        with self._conn() as conn:
            rows = conn.execute(
                """
                SELECT DISTINCT m.id, m.message_id, m.author_id, m.subject, m.created_at
                FROM messages m
                LEFT JOIN message_recipients r ON r.message_id = m.message_id
                WHERE m.author_id = ? OR r.recipient_id = ?
                ORDER BY m.id DESC
                LIMIT ?
                """,
                (user_id, user_id, safe_limit),
            ).fetchall()
        return list(rows)

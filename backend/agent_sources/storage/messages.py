"""Message ownership records."""

from __future__ import annotations

import sqlite3

from agent_sources.core.errors import PersistenceFailure
from agent_sources.db.sqlite import SQLiteDatabase
from agent_sources.models.entities import MessageRef
from agent_sources.utils.time import days_ago_ms, now_ms


class MessageStore:
    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    def get(self, message_id: str) -> MessageRef | None:
        row = self.db.execute(
            "SELECT message_id, conversation_id, user_id, created_at FROM messages WHERE message_id = ?",
            [message_id],
        ).fetchone()
        return _row_to_message(row) if row else None

    def get_owned(self, message_id: str, conversation_id: str, user_id: str) -> MessageRef | None:
        """Return the message only when it belongs to this user and conversation."""
        row = self.db.execute(
            """
            SELECT message_id, conversation_id, user_id, created_at FROM messages
            WHERE message_id = ? AND conversation_id = ? AND user_id = ?
            """,
            [message_id, conversation_id, user_id],
        ).fetchone()
        return _row_to_message(row) if row else None

    def ensure(self, message_id: str, conversation_id: str, user_id: str) -> MessageRef:
        """Create the ownership row if missing and return whatever is stored."""
        self.db.execute(
            """
            INSERT OR IGNORE INTO messages (message_id, conversation_id, user_id, created_at)
            VALUES (?, ?, ?, ?)
            """,
            [message_id, conversation_id, user_id, now_ms()],
        )
        self.db.commit()
        stored = self.get(message_id)
        if stored is None:
            raise PersistenceFailure(f"ownership row for {message_id} was not written")
        return stored

    def list_ids_for_conversation(self, conversation_id: str, user_id: str) -> list[str]:
        rows = self.db.query(
            "SELECT message_id FROM messages WHERE conversation_id = ? AND user_id = ?",
            [conversation_id, user_id],
        )
        return [row["message_id"] for row in rows]

    def delete_conversation(self, conversation_id: str, user_id: str) -> int:
        cursor = self.db.execute(
            "DELETE FROM messages WHERE conversation_id = ? AND user_id = ?",
            [conversation_id, user_id],
        )
        self.db.commit()
        return cursor.rowcount

    def purge_uncited_older_than(self, days: int) -> int:
        """Drop ownership rows whose citations have all expired."""
        cursor = self.db.execute(
            """
            DELETE FROM messages
            WHERE created_at < ?
              AND NOT EXISTS (SELECT 1 FROM source_records sr WHERE sr.message_id = messages.message_id)
            """,
            [days_ago_ms(days)],
        )
        self.db.commit()
        return cursor.rowcount


def _row_to_message(row: sqlite3.Row) -> MessageRef:
    return MessageRef(
        message_id=row["message_id"],
        conversation_id=row["conversation_id"],
        user_id=row["user_id"],
        created_at=row["created_at"],
    )


__all__ = ["MessageStore"]

"""Audit trail of link requests."""

from __future__ import annotations

from typing import Literal

from agent_sources.db.sqlite import SQLiteDatabase
from agent_sources.utils.ids import new_id
from agent_sources.utils.time import days_ago_ms, now_ms

AuditResult = Literal["success", "denied", "error"]


class AuditLogStore:
    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    def record(
        self,
        action: str,
        user_id: str,
        file_id: str,
        result: AuditResult,
        message_id: str | None = None,
        conversation_id: str | None = None,
        detail: str | None = None,
    ) -> str:
        entry_id = new_id("aud")
        self.db.execute(
            """
            INSERT INTO access_audit
              (id, action, user_id, file_id, message_id, conversation_id, result, detail, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [entry_id, action, user_id, file_id, message_id, conversation_id, result, detail, now_ms()],
        )
        self.db.commit()
        return entry_id

    def list_for_user(self, user_id: str, limit: int = 100) -> list[dict[str, object]]:
        rows = self.db.query(
            """
            SELECT id, action, file_id, message_id, conversation_id, result, detail, created_at
            FROM access_audit WHERE user_id = ? ORDER BY created_at DESC LIMIT ?
            """,
            [user_id, limit],
        )
        return [dict(row) for row in rows]

    def purge_older_than(self, days: int) -> int:
        cursor = self.db.execute("DELETE FROM access_audit WHERE created_at < ?", [days_ago_ms(days)])
        self.db.commit()
        return cursor.rowcount


__all__ = ["AuditLogStore", "AuditResult"]

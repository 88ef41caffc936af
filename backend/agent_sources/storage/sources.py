"""Durable citation records, one per (message, file)."""

from __future__ import annotations

import sqlite3
from typing import Sequence

import orjson

from agent_sources.db.sqlite import SQLiteDatabase, placeholders
from agent_sources.models.entities import SourceRecord, StorageType
from agent_sources.utils.time import days_ago_ms, now_ms

_COLUMNS = (
    "message_id, file_id, conversation_id, user_id, file_name, pages_json, relevance, "
    "page_relevance_json, storage_type, bucket, object_key, mime_type, created_at, "
    "last_accessed_at, access_count"
)


class SourceRecordStore:
    """Upsert-by-(message_id, file_id) store with list-union semantics for pages."""

    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    def upsert_many(self, records: Sequence[SourceRecord]) -> list[SourceRecord]:
        """Insert records, merging into any existing row for the same (message, file)."""
        if not records:
            return []
        pending: dict[tuple[str, str], SourceRecord] = {}
        for record in records:
            identity = (record.message_id, record.file_id)
            existing = pending.get(identity)
            pending[identity] = existing.merge(record) if existing else record

        stored: list[SourceRecord] = []
        with self.db.transaction() as cursor:
            for (message_id, file_id), record in pending.items():
                row = cursor.execute(
                    f"SELECT {_COLUMNS} FROM source_records WHERE message_id = ? AND file_id = ?",
                    [message_id, file_id],
                ).fetchone()
                merged = _row_to_record(row).merge(record) if row else record
                if not merged.created_at:
                    merged.created_at = now_ms()
                cursor.execute(
                    f"""
                    INSERT INTO source_records ({_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(message_id, file_id) DO UPDATE SET
                      file_name = excluded.file_name,
                      pages_json = excluded.pages_json,
                      relevance = excluded.relevance,
                      page_relevance_json = excluded.page_relevance_json,
                      bucket = excluded.bucket,
                      object_key = excluded.object_key,
                      mime_type = excluded.mime_type
                    """,
                    _record_params(merged),
                )
                stored.append(merged)
        return stored

    def get(self, message_id: str, file_id: str) -> SourceRecord | None:
        row = self.db.execute(
            f"SELECT {_COLUMNS} FROM source_records WHERE message_id = ? AND file_id = ?",
            [message_id, file_id],
        ).fetchone()
        return _row_to_record(row) if row else None

    def list_for_message(self, message_id: str) -> list[SourceRecord]:
        rows = self.db.query(
            f"SELECT {_COLUMNS} FROM source_records WHERE message_id = ? ORDER BY relevance DESC, rowid ASC",
            [message_id],
        )
        return [_row_to_record(row) for row in rows]

    def record_access(self, message_id: str, file_id: str) -> None:
        self.db.execute(
            """
            UPDATE source_records
            SET access_count = access_count + 1, last_accessed_at = ?
            WHERE message_id = ? AND file_id = ?
            """,
            [now_ms(), message_id, file_id],
        )
        self.db.commit()

    def user_cites(self, user_id: str, file_id: str) -> bool:
        """True when any message owned by `user_id` cites `file_id`."""
        row = self.db.execute(
            "SELECT 1 FROM source_records WHERE user_id = ? AND file_id = ? LIMIT 1",
            [user_id, file_id],
        ).fetchone()
        return row is not None

    def purge_older_than(self, days: int) -> int:
        cursor = self.db.execute("DELETE FROM source_records WHERE created_at < ?", [days_ago_ms(days)])
        self.db.commit()
        return cursor.rowcount

    def delete_for_messages(self, message_ids: Sequence[str]) -> int:
        if not message_ids:
            return 0
        cursor = self.db.execute(
            f"DELETE FROM source_records WHERE message_id IN ({placeholders(message_ids)})",
            list(message_ids),
        )
        self.db.commit()
        return cursor.rowcount


def _record_params(record: SourceRecord) -> list[object]:
    return [
        record.message_id,
        record.file_id,
        record.conversation_id,
        record.user_id,
        record.file_name,
        orjson.dumps(sorted(set(record.pages))).decode("utf-8"),
        float(record.relevance),
        orjson.dumps({str(page): score for page, score in record.page_relevance.items()}).decode("utf-8"),
        record.storage_type.value,
        record.bucket,
        record.key,
        record.mime_type,
        record.created_at,
        record.last_accessed_at,
        record.access_count,
    ]


def _row_to_record(row: sqlite3.Row) -> SourceRecord:
    page_relevance = orjson.loads(row["page_relevance_json"] or "{}")
    return SourceRecord(
        message_id=row["message_id"],
        file_id=row["file_id"],
        conversation_id=row["conversation_id"],
        user_id=row["user_id"],
        file_name=row["file_name"],
        pages=[int(page) for page in orjson.loads(row["pages_json"] or "[]")],
        relevance=float(row["relevance"]),
        page_relevance={int(page): float(score) for page, score in page_relevance.items()},
        storage_type=StorageType.parse(row["storage_type"]) or StorageType.LOCAL,
        bucket=row["bucket"],
        key=row["object_key"],
        mime_type=row["mime_type"],
        created_at=row["created_at"],
        last_accessed_at=row["last_accessed_at"],
        access_count=row["access_count"],
    )


__all__ = ["SourceRecordStore"]

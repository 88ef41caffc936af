"""File metadata lookups (file id -> storage location)."""

from __future__ import annotations

import sqlite3
from typing import Sequence

from agent_sources.db.sqlite import SQLiteDatabase, placeholders
from agent_sources.models.entities import FileMetadata, StorageType
from agent_sources.utils.time import now_ms

_COLUMNS = "file_id, user_id, display_name, source, bucket, object_key, mime_type, size_bytes, filepath"


class FileMetadataStore:
    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    def get(self, file_id: str) -> FileMetadata | None:
        row = self.db.execute(f"SELECT {_COLUMNS} FROM files WHERE file_id = ?", [file_id]).fetchone()
        return _row_to_file(row) if row else None

    def get_many(self, file_ids: Sequence[str]) -> dict[str, FileMetadata]:
        """Batch lookup; unknown ids are simply absent from the result."""
        unique_ids = list(dict.fromkeys(file_ids))
        if not unique_ids:
            return {}
        rows = self.db.query(
            f"SELECT {_COLUMNS} FROM files WHERE file_id IN ({placeholders(unique_ids)})",
            unique_ids,
        )
        return {row["file_id"]: _row_to_file(row) for row in rows}

    def upsert(self, metadata: FileMetadata) -> bool:
        """Insert or update a file row; returns False when the id is owned by another user."""
        now = now_ms()
        cursor = self.db.execute(
            f"""
            INSERT INTO files ({_COLUMNS}, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(file_id) DO UPDATE SET
              display_name = excluded.display_name,
              source = excluded.source,
              bucket = excluded.bucket,
              object_key = excluded.object_key,
              mime_type = excluded.mime_type,
              size_bytes = excluded.size_bytes,
              filepath = excluded.filepath,
              updated_at = excluded.updated_at
            WHERE files.user_id IS excluded.user_id
            """,
            [
                metadata.file_id,
                metadata.user_id,
                metadata.display_name,
                metadata.source.value,
                metadata.bucket,
                metadata.key,
                metadata.mime_type,
                metadata.size_bytes,
                metadata.filepath,
                now,
                now,
            ],
        )
        self.db.commit()
        return cursor.rowcount > 0


def _row_to_file(row: sqlite3.Row) -> FileMetadata:
    return FileMetadata(
        file_id=row["file_id"],
        user_id=row["user_id"],
        display_name=row["display_name"],
        source=StorageType.parse(row["source"]) or StorageType.LOCAL,
        bucket=row["bucket"],
        key=row["object_key"],
        mime_type=row["mime_type"],
        size_bytes=row["size_bytes"],
        filepath=row["filepath"],
    )


__all__ = ["FileMetadataStore"]

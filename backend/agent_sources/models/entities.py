"""Internal dataclasses representing parsed, persisted and cached entities."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal


class StorageType(str, Enum):
    LOCAL = "local"
    OBJECT_STORE = "object-store"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> "StorageType | None":
        """Map a raw storage label to a member; None when the label is absent."""
        if value is None:
            return None
        normalized = value.strip().lower()
        if not normalized or normalized == "n/a":
            return None
        if normalized in _OBJECT_STORE_ALIASES:
            return cls.OBJECT_STORE
        if normalized in ("local", "vectordb"):
            return cls.LOCAL
        return cls.UNKNOWN


_OBJECT_STORE_ALIASES = frozenset({"s3", "object-store", "object_store", "objectstore"})


@dataclass(slots=True)
class SearchResultUnit:
    """One parsed file-search hit. Lives for a single response-processing pass."""

    file_id: str
    file_name: str
    relevance: float = 0.5
    page: int | None = None
    storage_type: StorageType | None = None
    bucket: str | None = None
    key: str | None = None
    content: str = ""
    page_relevance: dict[int, float] = field(default_factory=dict)


@dataclass(slots=True)
class FileMetadata:
    file_id: str
    display_name: str
    source: StorageType = StorageType.LOCAL
    user_id: str | None = None
    bucket: str | None = None
    key: str | None = None
    mime_type: str | None = None
    size_bytes: int | None = None
    filepath: str | None = None


@dataclass(slots=True)
class MessageRef:
    message_id: str
    conversation_id: str
    user_id: str
    created_at: int = 0


@dataclass(slots=True)
class SourceRecord:
    """Durable citation of one file by one message."""

    message_id: str
    file_id: str
    conversation_id: str
    user_id: str
    file_name: str
    pages: list[int] = field(default_factory=list)
    relevance: float = 0.0
    page_relevance: dict[int, float] = field(default_factory=dict)
    storage_type: StorageType = StorageType.LOCAL
    bucket: str | None = None
    key: str | None = None
    mime_type: str | None = None
    created_at: int = 0
    last_accessed_at: int | None = None
    access_count: int = 0

    def merge(self, other: "SourceRecord") -> "SourceRecord":
        """Fold a duplicate citation of the same (message, file) into this one."""
        merged_relevance = dict(self.page_relevance)
        for page, score in other.page_relevance.items():
            merged_relevance[page] = max(score, merged_relevance.get(page, 0.0))
        return SourceRecord(
            message_id=self.message_id,
            file_id=self.file_id,
            conversation_id=self.conversation_id,
            user_id=self.user_id,
            file_name=self.file_name or other.file_name,
            pages=sorted(set(self.pages) | set(other.pages)),
            relevance=max(self.relevance, other.relevance),
            page_relevance=merged_relevance,
            storage_type=self.storage_type,
            bucket=self.bucket or other.bucket,
            key=self.key or other.key,
            mime_type=self.mime_type or other.mime_type,
            created_at=self.created_at or other.created_at,
            last_accessed_at=self.last_accessed_at,
            access_count=self.access_count,
        )


@dataclass(slots=True)
class PrefetchCandidate:
    message_id: str
    file_id: str
    priority: float
    # Debugging aid only; never drives logic.
    reason: str

    @property
    def key(self) -> str:
        return cache_key(self.message_id, self.file_id)


PrefetchStatus = Literal["pending", "complete", "error"]


@dataclass(slots=True)
class PrefetchCacheEntry:
    key: str
    status: PrefetchStatus
    expires_at: float
    resolved_at: float
    url: str | None = None
    link_expires_at: str | None = None
    file_name: str | None = None
    mime_type: str | None = None
    storage_type: StorageType = StorageType.LOCAL


@dataclass(slots=True)
class UserBehaviorProfile:
    downloads_in_session: int = 0
    previews_before_download: bool = False
    batch_download_tendency: bool = False
    preferred_file_types: list[str] = field(default_factory=list)
    hourly_activity: dict[int, float] = field(default_factory=dict)
    session_started_at: float = 0.0


@dataclass(slots=True)
class IssuedLink:
    download_url: str
    expires_at: str
    file_name: str
    mime_type: str
    storage_type: StorageType = StorageType.LOCAL
    fallback: bool = False


def cache_key(message_id: str, file_id: str) -> str:
    return f"{message_id}:{file_id}"


__all__ = [
    "StorageType",
    "SearchResultUnit",
    "FileMetadata",
    "MessageRef",
    "SourceRecord",
    "PrefetchCandidate",
    "PrefetchStatus",
    "PrefetchCacheEntry",
    "UserBehaviorProfile",
    "IssuedLink",
    "cache_key",
]

"""Pydantic DTOs exposed via API."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SourceUrlRequest(_CamelModel):
    # Optional so that missing fields surface as 400 rather than 422.
    file_id: str | None = Field(default=None, alias="fileId")
    message_id: str | None = Field(default=None, alias="messageId")
    conversation_id: str | None = Field(default=None, alias="conversationId")


class SourceUrlResponse(_CamelModel):
    download_url: str = Field(alias="downloadUrl")
    expires_at: str = Field(alias="expiresAt")
    file_name: str = Field(alias="fileName")
    mime_type: str = Field(alias="mimeType")


class BatchSourceUrlRequest(_CamelModel):
    file_ids: list[str] | None = Field(default=None, alias="fileIds")
    message_id: str | None = Field(default=None, alias="messageId")
    conversation_id: str | None = Field(default=None, alias="conversationId")


class BatchSourceUrlResponse(_CamelModel):
    urls: dict[str, SourceUrlResponse]


class AgentResponseRequest(_CamelModel):
    message_id: str | None = Field(default=None, alias="messageId")
    conversation_id: str | None = Field(default=None, alias="conversationId")
    content_parts: list[dict[str, Any]] = Field(default_factory=list, alias="contentParts")


class SourceStorageMetadata(_CamelModel):
    storage_type: str = Field(alias="storageType")
    bucket: str | None = None
    key: str | None = None


class CitationSource(_CamelModel):
    file_id: str = Field(alias="fileId")
    file_name: str = Field(alias="fileName")
    pages: list[int]
    pages_by_relevance: list[int] = Field(alias="pagesByRelevance")
    relevance: float
    type: Literal["file"] = "file"
    page_relevance: dict[int, float] = Field(alias="pageRelevance")
    metadata: SourceStorageMetadata


class AgentResponseResult(_CamelModel):
    message_id: str = Field(alias="messageId")
    sources: list[CitationSource]
    persisted: bool


class FileMetadataRequest(_CamelModel):
    file_id: str = Field(alias="fileId")
    display_name: str = Field(alias="displayName")
    source: str = "local"
    bucket: str | None = None
    key: str | None = None
    mime_type: str | None = Field(default=None, alias="mimeType")
    size_bytes: int | None = Field(default=None, alias="bytes")
    filepath: str | None = None


class FileMetadataResponse(FileMetadataRequest):
    """The stored row; the owner is always the registering caller."""

    user_id: str = Field(alias="userId")


class PrefetchRunRequest(_CamelModel):
    message_id: str = Field(alias="messageId")
    conversation_id: str = Field(alias="conversationId")
    priority_override: bool = Field(default=False, alias="priorityOverride")


class PrefetchTriggerRequest(_CamelModel):
    file_id: str = Field(alias="fileId")
    message_id: str = Field(alias="messageId")
    conversation_id: str = Field(alias="conversationId")
    priority: float | None = None


class PrefetchRunResponse(_CamelModel):
    status: Literal["idle", "active", "complete"]
    prefetched_count: int = Field(alias="prefetchedCount")
    queue_length: int = Field(alias="queueLength")
    skipped: int = 0
    failed: int = 0


class PrefetchLookupResponse(_CamelModel):
    prefetched: bool
    url: str | None = None


class BehaviorEventRequest(_CamelModel):
    conversation_id: str = Field(alias="conversationId")
    event: Literal["download", "preview"]
    file_type: str | None = Field(default=None, alias="fileType")


class PurgeResponse(BaseModel):
    citations: int
    messages: int
    audit: int


class DeleteConversationResponse(BaseModel):
    status: Literal["ok", "noop"]
    deleted: int


__all__ = [
    "SourceUrlRequest",
    "SourceUrlResponse",
    "BatchSourceUrlRequest",
    "BatchSourceUrlResponse",
    "AgentResponseRequest",
    "AgentResponseResult",
    "CitationSource",
    "SourceStorageMetadata",
    "FileMetadataRequest",
    "FileMetadataResponse",
    "PrefetchRunRequest",
    "PrefetchTriggerRequest",
    "PrefetchRunResponse",
    "PrefetchLookupResponse",
    "BehaviorEventRequest",
    "PurgeResponse",
    "DeleteConversationResponse",
]

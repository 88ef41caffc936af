"""Decide whether a user may request a download link for a cited file."""

from __future__ import annotations

from dataclasses import dataclass
from typing import NoReturn

from agent_sources.core.errors import AccessDenied, NotFound
from agent_sources.core.logging import get_logger
from agent_sources.core.metrics import ACCESS_DENIED
from agent_sources.models.entities import FileMetadata, MessageRef, SourceRecord
from agent_sources.storage.files import FileMetadataStore
from agent_sources.storage.messages import MessageStore
from agent_sources.storage.sources import SourceRecordStore

logger = get_logger(__name__)


@dataclass(slots=True)
class ValidatedAccess:
    message: MessageRef
    record: SourceRecord
    file: FileMetadata


class AccessValidator:
    """Re-derives the (user, message, file) grant on every call; nothing is cached.

    Checks run in a fixed order: message ownership, then citation membership,
    then file metadata. File existence is never revealed before ownership is
    established.
    """

    def __init__(self, messages: MessageStore, records: SourceRecordStore, files: FileMetadataStore) -> None:
        self.messages = messages
        self.records = records
        self.files = files

    def validate(self, user_id: str, message_id: str, conversation_id: str, file_id: str) -> ValidatedAccess:
        message = self.messages.get_owned(message_id, conversation_id, user_id)
        if message is None:
            self._deny("message_not_owned", user_id, message_id, file_id)

        record = self.records.get(message_id, file_id)
        if record is None:
            self._deny("file_not_cited", user_id, message_id, file_id)

        file = self.files.get(file_id)
        if file is None:
            logger.warning("Cited file %s has no metadata", file_id, extra={"ctx_message_id": message_id})
            raise NotFound()

        return ValidatedAccess(message=message, record=record, file=file)

    @staticmethod
    def _deny(reason: str, user_id: str, message_id: str, file_id: str) -> NoReturn:
        ACCESS_DENIED.labels(reason=reason).inc()
        logger.warning(
            "Denied file access: %s",
            reason,
            extra={"ctx_user_id": user_id, "ctx_message_id": message_id, "ctx_file_id": file_id},
        )
        raise AccessDenied(reason)


__all__ = ["AccessValidator", "ValidatedAccess"]

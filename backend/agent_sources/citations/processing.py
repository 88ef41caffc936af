"""Turn an agent response's content parts into recorded citations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from agent_sources.citations.parser import parse_content_parts
from agent_sources.citations.recorder import CitationRecorder
from agent_sources.citations.selector import select_diverse, sort_pages_by_relevance
from agent_sources.core.config import Settings
from agent_sources.core.errors import AccessDenied
from agent_sources.core.logging import get_logger
from agent_sources.models.entities import SourceRecord
from agent_sources.storage.messages import MessageStore

logger = get_logger(__name__)


@dataclass(slots=True)
class ProcessedResponse:
    message_id: str
    sources: list[dict[str, Any]] = field(default_factory=list)
    persisted: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {"messageId": self.message_id, "sources": self.sources, "persisted": self.persisted}


class ResponseProcessor:
    """Parse, select and record file-search citations for one agent message."""

    def __init__(self, messages: MessageStore, recorder: CitationRecorder, settings: Settings) -> None:
        self.messages = messages
        self.recorder = recorder
        self.settings = settings

    def process(
        self,
        message_id: str,
        conversation_id: str,
        user_id: str,
        content_parts: Iterable[Mapping[str, Any]],
    ) -> ProcessedResponse:
        message = self.messages.ensure(message_id, conversation_id, user_id)
        if message.user_id != user_id or message.conversation_id != conversation_id:
            raise AccessDenied("message_owner_mismatch")

        units = parse_content_parts(content_parts)
        if not units:
            logger.warning("No file search results in message %s; no citations created", message_id)
            return ProcessedResponse(message_id=message_id)

        selected = select_diverse(units, self.settings.max_file_search_results)
        recorded = self.recorder.record(message, selected, units)
        logger.info(
            "Recorded %d citations from %d hits for message %s",
            len(recorded.records),
            len(units),
            message_id,
            extra={"ctx_message_id": message_id, "ctx_persisted": recorded.persisted},
        )
        return ProcessedResponse(
            message_id=message_id,
            sources=[citation_payload(record) for record in recorded.records],
            persisted=recorded.persisted,
        )


def citation_payload(record: SourceRecord) -> dict[str, Any]:
    """Client-facing citation metadata for one record."""
    return {
        "fileId": record.file_id,
        "fileName": record.file_name,
        "pages": list(record.pages),
        "pagesByRelevance": sort_pages_by_relevance(record.pages, record.page_relevance),
        "relevance": record.relevance,
        "type": "file",
        "pageRelevance": dict(record.page_relevance),
        "metadata": {
            "storageType": record.storage_type.value,
            "bucket": record.bucket,
            "key": record.key,
        },
    }


__all__ = ["ProcessedResponse", "ResponseProcessor", "citation_payload"]

"""Persist selected search results as durable per-message citation records."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from agent_sources.core.config import Settings
from agent_sources.core.errors import PersistenceFailure
from agent_sources.core.logging import get_logger
from agent_sources.core.metrics import CITATION_PERSIST_FAILURES
from agent_sources.models.entities import FileMetadata, MessageRef, SearchResultUnit, SourceRecord, StorageType
from agent_sources.storage.files import FileMetadataStore
from agent_sources.storage.sources import SourceRecordStore
from agent_sources.utils.time import now_ms

logger = get_logger(__name__)


@dataclass(slots=True)
class RecordedCitations:
    records: list[SourceRecord]
    persisted: bool


class CitationRecorder:
    """Resolve storage metadata for a finished selection and write one record per file."""

    def __init__(self, files: FileMetadataStore, records: SourceRecordStore, settings: Settings) -> None:
        self.files = files
        self.records = records
        self.settings = settings

    def record(
        self,
        message: MessageRef,
        selected: Sequence[SearchResultUnit],
        all_units: Sequence[SearchResultUnit] | None = None,
    ) -> RecordedCitations:
        records = self.build_records(message, selected, all_units)
        if not records:
            return RecordedCitations(records=[], persisted=True)
        try:
            self._persist(records)
        except PersistenceFailure as exc:
            CITATION_PERSIST_FAILURES.inc()
            logger.error(
                "Failed to persist citations for message %s: %s",
                message.message_id,
                exc,
                extra={"ctx_message_id": message.message_id, "ctx_count": len(records)},
            )
            return RecordedCitations(records=records, persisted=False)
        return RecordedCitations(records=records, persisted=True)

    def build_records(
        self,
        message: MessageRef,
        selected: Sequence[SearchResultUnit],
        all_units: Sequence[SearchResultUnit] | None = None,
    ) -> list[SourceRecord]:
        """One record per selected file, in selection order.

        Pages and relevance are merged over every hit of that file in `all_units`
        (defaults to `selected`).
        """
        hits = list(all_units) if all_units is not None else list(selected)
        file_order = list(dict.fromkeys(unit.file_id for unit in selected))
        if not file_order:
            return []
        metadata = self.lookup_metadata(file_order)
        created_at = now_ms()

        built: list[SourceRecord] = []
        for file_id in file_order:
            file_hits = [unit for unit in hits if unit.file_id == file_id] or [
                unit for unit in selected if unit.file_id == file_id
            ]
            built.append(self._merge_hits(message, file_id, file_hits, metadata.get(file_id), created_at))
        return built

    def lookup_metadata(self, file_ids: Sequence[str]) -> dict[str, FileMetadata]:
        try:
            return self.files.get_many(file_ids)
        except Exception as exc:
            logger.error("File metadata lookup failed for %d files: %s", len(file_ids), exc)
            return {}

    def _merge_hits(
        self,
        message: MessageRef,
        file_id: str,
        hits: Sequence[SearchResultUnit],
        metadata: FileMetadata | None,
        created_at: int,
    ) -> SourceRecord:
        pages: set[int] = set()
        page_relevance: dict[int, float] = {}
        for hit in hits:
            if hit.page is not None:
                pages.add(hit.page)
            for page, score in hit.page_relevance.items():
                page_relevance[page] = max(score, page_relevance.get(page, 0.0))

        bucket = next((hit.bucket for hit in hits if hit.bucket), None)
        key = next((hit.key for hit in hits if hit.key), None)
        if metadata is not None:
            bucket = bucket or metadata.bucket
            key = key or metadata.key

        return SourceRecord(
            message_id=message.message_id,
            file_id=file_id,
            conversation_id=message.conversation_id,
            user_id=message.user_id,
            file_name=hits[0].file_name,
            pages=sorted(pages),
            relevance=max(hit.relevance for hit in hits),
            page_relevance=page_relevance,
            storage_type=self._storage_type(hits, metadata),
            bucket=bucket,
            key=key,
            mime_type=metadata.mime_type if metadata else None,
            created_at=created_at,
        )

    def _storage_type(self, hits: Sequence[SearchResultUnit], metadata: FileMetadata | None) -> StorageType:
        explicit = next(
            (hit.storage_type for hit in hits if hit.storage_type and hit.storage_type is not StorageType.UNKNOWN),
            None,
        )
        if explicit:
            return explicit
        if metadata is not None and metadata.source is not StorageType.UNKNOWN:
            return metadata.source
        default = StorageType.parse(self.settings.default_storage_strategy)
        if default and default is not StorageType.UNKNOWN:
            return default
        return StorageType.LOCAL

    def _persist(self, records: Sequence[SourceRecord]) -> None:
        try:
            self.records.upsert_many(records)
        except Exception as exc:
            raise PersistenceFailure(str(exc)) from exc


__all__ = ["CitationRecorder", "RecordedCitations"]

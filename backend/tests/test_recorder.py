"""Tests for citation recording and response processing."""

import pytest

from agent_sources.citations.processing import ResponseProcessor
from agent_sources.citations.recorder import CitationRecorder
from agent_sources.citations.selector import select_diverse
from agent_sources.core.errors import AccessDenied, PersistenceFailure
from agent_sources.models.entities import FileMetadata, MessageRef, SearchResultUnit, StorageType
from agent_sources.storage.files import FileMetadataStore
from agent_sources.storage.messages import MessageStore
from agent_sources.storage.sources import SourceRecordStore

MESSAGE = MessageRef(message_id="msg-1", conversation_id="conv-1", user_id="user-1")


def _units() -> list[SearchResultUnit]:
    return [
        SearchResultUnit("F1", "f1.pdf", 0.9, page=2, page_relevance={2: 0.9}),
        SearchResultUnit("F1", "f1.pdf", 0.6, page=5, page_relevance={5: 0.6}),
        SearchResultUnit("F2", "f2.txt", 0.8, page=1, page_relevance={1: 0.8}),
    ]


def test_pages_merge_across_all_hits_of_selected_files(db, settings) -> None:
    recorder = CitationRecorder(FileMetadataStore(db), SourceRecordStore(db), settings)
    units = _units()
    result = recorder.record(MESSAGE, select_diverse(units, 2), units)

    assert result.persisted
    by_file = {record.file_id: record for record in result.records}
    assert list(by_file) == ["F1", "F2"]
    assert by_file["F1"].pages == [2, 5]
    assert by_file["F1"].relevance == 0.9
    assert by_file["F1"].page_relevance == {2: 0.9, 5: 0.6}
    assert by_file["F2"].pages == [1]
    assert by_file["F2"].relevance == 0.8


def test_recording_twice_is_idempotent(db, settings) -> None:
    store = SourceRecordStore(db)
    recorder = CitationRecorder(FileMetadataStore(db), store, settings)
    units = _units()
    recorder.record(MESSAGE, select_diverse(units, 2), units)
    recorder.record(MESSAGE, select_diverse(units, 2), units)

    stored = store.list_for_message("msg-1")
    assert [record.file_id for record in stored] == ["F1", "F2"]
    assert stored[0].pages == [2, 5]


def test_duplicate_writes_union_pages(db, settings) -> None:
    store = SourceRecordStore(db)
    recorder = CitationRecorder(FileMetadataStore(db), store, settings)
    first = [SearchResultUnit("F1", "f1.pdf", 0.4, page=3, page_relevance={3: 0.4})]
    second = [SearchResultUnit("F1", "f1.pdf", 0.7, page=1, page_relevance={1: 0.7})]
    recorder.record(MESSAGE, first)
    recorder.record(MESSAGE, second)

    record = store.get("msg-1", "F1")
    assert record is not None
    assert record.pages == [1, 3]
    assert record.relevance == 0.7
    assert record.page_relevance == {1: 0.7, 3: 0.4}


def test_storage_type_precedence(db, settings) -> None:
    files = FileMetadataStore(db)
    files.upsert(FileMetadata("F1", "f1.pdf", source=StorageType.OBJECT_STORE, bucket="docs", key="k/f1.pdf"))
    recorder = CitationRecorder(files, SourceRecordStore(db), settings)
    units = [
        SearchResultUnit("F1", "f1.pdf", 0.9),
        SearchResultUnit("F2", "f2.pdf", 0.8, storage_type=StorageType.OBJECT_STORE, bucket="b", key="k"),
        SearchResultUnit("F3", "f3.pdf", 0.7),
    ]
    records = {record.file_id: record for record in recorder.build_records(MESSAGE, units)}
    assert records["F1"].storage_type is StorageType.OBJECT_STORE
    assert (records["F1"].bucket, records["F1"].key) == ("docs", "k/f1.pdf")
    assert (records["F2"].bucket, records["F2"].key) == ("b", "k")
    assert records["F3"].storage_type is StorageType.LOCAL

    settings.default_storage_strategy = "s3"
    records = {record.file_id: record for record in recorder.build_records(MESSAGE, units)}
    assert records["F3"].storage_type is StorageType.OBJECT_STORE


class _BrokenStore:
    def upsert_many(self, records):
        raise RuntimeError("disk full")


def test_persistence_failure_still_returns_citations(db, settings) -> None:
    recorder = CitationRecorder(FileMetadataStore(db), _BrokenStore(), settings)
    result = recorder.record(MESSAGE, _units()[:1])
    assert not result.persisted
    assert [record.file_id for record in result.records] == ["F1"]


def test_processor_records_ownership_and_payload(db, settings, search_output: str) -> None:
    messages = MessageStore(db)
    processor = ResponseProcessor(
        messages,
        CitationRecorder(FileMetadataStore(db), SourceRecordStore(db), settings),
        settings,
    )
    parts = [{"type": "tool_call", "tool_call": {"name": "file_search", "output": search_output}}]
    processed = processor.process("msg-9", "conv-9", "user-9", parts)

    assert processed.persisted
    assert messages.get_owned("msg-9", "conv-9", "user-9") is not None
    first = processed.sources[0]
    assert first["fileId"] == "file-report"
    assert first["pages"] == [2, 5]
    assert first["pagesByRelevance"] == [2, 5]
    assert first["metadata"]["storageType"] == "local"

    with pytest.raises(AccessDenied):
        processor.process("msg-9", "conv-9", "intruder", parts)


def test_processor_without_search_output(db, settings) -> None:
    processor = ResponseProcessor(
        MessageStore(db),
        CitationRecorder(FileMetadataStore(db), SourceRecordStore(db), settings),
        settings,
    )
    processed = processor.process("msg-2", "conv-2", "user-2", [{"type": "text", "content": "hello"}])
    assert processed.sources == []
    assert processed.persisted


def test_missing_ownership_row_after_write_is_a_persistence_failure(db, monkeypatch) -> None:
    messages = MessageStore(db)
    monkeypatch.setattr(messages, "get", lambda message_id: None)
    with pytest.raises(PersistenceFailure):
        messages.ensure("msg-1", "conv-1", "user-1")

"""Tests for prefetch heuristics, cache and orchestration."""

import asyncio
from datetime import datetime, timedelta, timezone

from agent_sources.access.links import LinkIssuer
from agent_sources.access.service import DownloadLinkService
from agent_sources.access.signing import HmacUrlSigner
from agent_sources.access.validator import AccessValidator
from agent_sources.models.entities import FileMetadata, PrefetchCacheEntry, SourceRecord, UserBehaviorProfile
from agent_sources.prefetch.behavior import BehaviorTracker
from agent_sources.prefetch.cache import PrefetchCache
from agent_sources.prefetch.heuristics import (
    CitedSource,
    by_document_batch,
    by_small_size,
    generate_candidates,
    score_confidence,
)
from agent_sources.prefetch.orchestrator import PrefetchOrchestrator
from agent_sources.storage.audit import AuditLogStore
from agent_sources.storage.files import FileMetadataStore
from agent_sources.storage.messages import MessageStore
from agent_sources.storage.sources import SourceRecordStore

NIGHT = datetime(2026, 1, 5, 3, 0, tzinfo=timezone.utc)
NOON = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)


class _Clock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _source(file_id: str, index: int, file_type: str | None = None, size: int | None = None) -> CitedSource:
    return CitedSource(message_id="m", file_id=file_id, index=index, file_type=file_type, size_bytes=size)


def test_candidates_keep_max_priority_and_truncate() -> None:
    sources = [
        _source("a", 0, "xlsx", 10_000_000),
        _source("b", 1, "pdf", 2_000_000),
        _source("c", 2, "docx", 100),
        _source("d", 3, "png", 100),
    ]
    candidates = generate_candidates(sources, limit=3)
    assert [(candidate.file_id, candidate.priority) for candidate in candidates] == [("a", 10), ("b", 9), ("c", 8)]
    assert candidates[0].reason == "same_message_related"

    later = [_source(f"x{i}", i, "pdf") for i in range(6)]
    tail = generate_candidates(later, limit=6)[-1]
    assert (tail.file_id, tail.priority, tail.reason) == ("x5", 7, "common_file_type")


def test_batch_and_size_heuristics_in_isolation() -> None:
    lone = [_source("a", 0, "pdf")]
    assert by_document_batch(lone[0], lone) is None
    pair = [_source("a", 0, "pdf"), _source("b", 1, "doc")]
    assert by_document_batch(pair[0], pair).priority == 6
    assert by_small_size(_source("a", 0, size=512), []).reason == "small_file_fast_prefetch"
    assert by_small_size(_source("a", 0, size=2 * 1024 * 1024), []) is None


def test_confidence_signals_sum_and_cap() -> None:
    source = _source("a", 0, "pdf", 1024)
    confidence = score_confidence(source, None, NIGHT)
    assert round(confidence.value, 6) == 0.7
    assert confidence.reasons == ["optimal_file_size", "popular_file_type", "high_visibility_position"]

    busy = UserBehaviorProfile(
        downloads_in_session=5,
        previews_before_download=True,
        batch_download_tendency=True,
        preferred_file_types=["pdf"],
    )
    assert score_confidence(source, busy, NOON).value == 1.0
    assert score_confidence(_source("z", 7, "png"), None, NIGHT).value == 0.0
    assert round(score_confidence(_source("z", 7, "png"), None, NOON).value, 6) == 0.1


def test_cache_hard_ttl_and_lru_bound() -> None:
    clock = _Clock()
    cache = PrefetchCache(max_entries=2, clock=clock)
    for index, key in enumerate(["m:a", "m:b", "m:c"]):
        cache.set(PrefetchCacheEntry(key, "complete", expires_at=clock.now + 60, resolved_at=clock.now + index, url="u"))
    assert cache.get("m:a") is None
    assert cache.lookup_url("m", "b") is not None

    clock.now += 60
    assert cache.lookup_url("m", "b") is None
    assert cache.sweep() == 1
    assert len(cache) == 0


def test_lookup_ignores_pending_and_error_entries() -> None:
    clock = _Clock()
    cache = PrefetchCache(clock=clock)
    cache.set(PrefetchCacheEntry("m:a", "pending", expires_at=clock.now + 60, resolved_at=clock.now))
    cache.set(PrefetchCacheEntry("m:b", "error", expires_at=clock.now + 60, resolved_at=clock.now))
    assert cache.lookup_url("m", "a") is None
    assert cache.lookup_url("m", "b") is None


def test_behavior_tracker_profile() -> None:
    tracker = BehaviorTracker(clock=lambda: NOON)
    assert tracker.profile("u", "c") is None
    for file_type in ("PDF", "docx", "pdf"):
        tracker.track_download("u", "c", file_type)
    tracker.track_preview("u", "c")
    profile = tracker.profile("u", "c")
    assert profile is not None
    assert profile.downloads_in_session == 3
    assert profile.batch_download_tendency
    assert profile.previews_before_download
    assert profile.preferred_file_types == ["pdf", "docx"]
    assert profile.hourly_activity == {12: 1.0}
    assert tracker.profile("u", "other") is None


def _orchestrator(db, settings, clock=None):
    records = SourceRecordStore(db)
    files = FileMetadataStore(db)
    messages = MessageStore(db)
    cache = PrefetchCache(clock=clock or _Clock())
    links = DownloadLinkService(
        validator=AccessValidator(messages, records, files),
        issuer=LinkIssuer(settings, HmacUrlSigner(settings.object_store_endpoint, "secret")),
        audit=AuditLogStore(db),
        settings=settings,
        cache=cache,
        records=records,
    )
    orchestrator = PrefetchOrchestrator(
        settings, links, messages, records, files, cache, BehaviorTracker(), clock=cache.clock
    )
    return orchestrator, cache


def _seed_message(db, files: list[tuple[str, str, int]]) -> None:
    MessageStore(db).ensure("msg-1", "conv-1", "alice")
    SourceRecordStore(db).upsert_many(
        [
            SourceRecord("msg-1", file_id, "conv-1", "alice", file_name=name, relevance=1.0 - index * 0.1)
            for index, (file_id, name, _) in enumerate(files)
        ]
    )
    store = FileMetadataStore(db)
    for file_id, name, size in files:
        store.upsert(FileMetadata(file_id, name, size_bytes=size))


def test_run_resolves_accepted_candidates(db, settings) -> None:
    _seed_message(db, [("f1", "a.pdf", 1024), ("f2", "b.docx", 2048), ("f3", "c.txt", 10)])
    orchestrator, cache = _orchestrator(db, settings)
    result = asyncio.run(orchestrator.run("alice", "conv-1", "msg-1", "http://app"))

    assert result.status == "complete"
    assert result.prefetched_count == 3
    assert orchestrator.status("conv-1", "msg-1") == "complete"
    assert orchestrator.is_prefetched("msg-1", "f1")
    assert orchestrator.get_prefetched_url("msg-1", "f1") == "http://app/api/files/download/alice/f1"

    again = asyncio.run(orchestrator.run("alice", "conv-1", "msg-1", "http://app"))
    assert again.prefetched_count == 3
    assert again.failed == 0


def test_low_confidence_candidate_is_never_resolved(db, settings) -> None:
    settings.prefetch_threshold = 1.0
    _seed_message(db, [("f1", "image.png", 50_000_000)])
    orchestrator, cache = _orchestrator(db, settings)
    result = asyncio.run(orchestrator.run("alice", "conv-1", "msg-1", "http://app"))

    assert result.skipped == 1
    assert result.prefetched_count == 0
    assert cache.get("msg-1:f1") is None
    assert not orchestrator.is_prefetched("msg-1", "f1")

    forced = asyncio.run(orchestrator.run("alice", "conv-1", "msg-1", "http://app", priority_override=True))
    assert forced.prefetched_count == 1


def test_entry_expiry_never_exceeds_link_expiry(db, settings) -> None:
    settings.prefetch_cache_ttl_seconds = 24 * 60 * 60
    _seed_message(db, [("f1", "a.pdf", 1024)])
    clock = _Clock(datetime.now(timezone.utc).timestamp())
    orchestrator, cache = _orchestrator(db, settings, clock=clock)
    asyncio.run(orchestrator.trigger("alice", "conv-1", "msg-1", "f1", "http://app", priority=10))

    entry = cache.get("msg-1:f1")
    assert entry is not None and entry.status == "complete"
    assert entry.expires_at <= clock.now + settings.signed_url_expiry_seconds + 1


def test_failures_are_swallowed_and_retried_after_cooldown(db, settings) -> None:
    _seed_message(db, [("f1", "a.pdf", 1024)])
    orchestrator, cache = _orchestrator(db, settings)
    orchestrator.links.validator = None
    result = asyncio.run(orchestrator.trigger("alice", "conv-1", "msg-1", "f1", "http://app", priority=5))

    assert result.failed == 1
    entry = cache.get("msg-1:f1")
    assert entry is not None and entry.status == "error"
    assert orchestrator.get_prefetched_url("msg-1", "f1") is None

    cache.clock.now += settings.prefetch_error_cooldown_seconds
    assert cache.get("msg-1:f1") is None


def test_other_users_messages_are_ignored(db, settings) -> None:
    _seed_message(db, [("f1", "a.pdf", 1024)])
    orchestrator, cache = _orchestrator(db, settings)
    result = asyncio.run(orchestrator.run("mallory", "conv-1", "msg-1", "http://app"))
    assert result.status == "idle"
    assert len(cache) == 0


def test_disabled_prefetch_does_nothing(db, settings) -> None:
    settings.prefetch_enabled = False
    _seed_message(db, [("f1", "a.pdf", 1024)])
    orchestrator, cache = _orchestrator(db, settings)
    result = asyncio.run(orchestrator.run("alice", "conv-1", "msg-1", "http://app"))
    assert result.status == "idle"
    assert len(cache) == 0


def test_only_user_requests_count_as_access(db, settings) -> None:
    _seed_message(db, [("f1", "a.pdf", 1024)])
    orchestrator, cache = _orchestrator(db, settings)
    records = SourceRecordStore(db)

    asyncio.run(orchestrator.run("alice", "conv-1", "msg-1", "http://app"))
    assert orchestrator.is_prefetched("msg-1", "f1")
    assert records.get("msg-1", "f1").access_count == 0

    link = asyncio.run(orchestrator.links.request_link("alice", "msg-1", "conv-1", "f1", "http://app"))
    assert link.download_url == orchestrator.get_prefetched_url("msg-1", "f1")
    assert records.get("msg-1", "f1").access_count == 1


def test_sweep_and_deletion_release_scope_state(db, settings) -> None:
    _seed_message(db, [("f1", "a.pdf", 1024)])
    orchestrator, cache = _orchestrator(db, settings)

    asyncio.run(orchestrator.run("alice", "conv-1", "msg-1", "http://app"))
    assert orchestrator.status("conv-1", "msg-1") == "complete"
    orchestrator.forget_conversation("alice", "conv-1")
    assert orchestrator.status("conv-1", "msg-1") == "idle"

    asyncio.run(orchestrator.run("alice", "conv-1", "msg-1", "http://app"))
    assert orchestrator.status("conv-1", "msg-1") == "complete"
    cache.clock.now += settings.prefetch_cache_ttl_seconds
    assert orchestrator.sweep() == 1
    assert orchestrator.status("conv-1", "msg-1") == "idle"


def test_behavior_profiles_are_bounded_and_swept() -> None:
    now = [NOON]
    tracker = BehaviorTracker(clock=lambda: now[0], max_profiles=2)
    tracker.track_download("u", "c1", "pdf")
    now[0] = NOON + timedelta(minutes=1)
    tracker.track_preview("u", "c2")
    now[0] = NOON + timedelta(minutes=2)
    tracker.track_preview("u", "c3")

    assert len(tracker) == 2
    assert tracker.profile("u", "c1") is None

    now[0] = NOON + timedelta(hours=2)
    tracker.track_preview("u", "c3")
    assert tracker.sweep(max_idle_seconds=60 * 60) == 1
    assert tracker.profile("u", "c2") is None
    assert tracker.profile("u", "c3") is not None

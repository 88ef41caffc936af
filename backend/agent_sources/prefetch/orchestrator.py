"""Background resolution of likely-needed download links.

Nothing here may fail a foreground request: every error is logged and
swallowed, and lookups never trigger resolution.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Literal, Sequence

from agent_sources.access.service import PREFETCH_ACTION, DownloadLinkService
from agent_sources.core.config import Settings
from agent_sources.core.errors import OrchestratorFailure
from agent_sources.core.logging import get_logger
from agent_sources.core.metrics import PREFETCH_RESOLUTIONS
from agent_sources.models.entities import FileMetadata, PrefetchCacheEntry, PrefetchCandidate, SourceRecord
from agent_sources.prefetch.behavior import BehaviorTracker
from agent_sources.prefetch.cache import PrefetchStore
from agent_sources.prefetch.heuristics import CitedSource, generate_candidates, score_confidence
from agent_sources.storage.files import FileMetadataStore
from agent_sources.storage.messages import MessageStore
from agent_sources.storage.sources import SourceRecordStore
from agent_sources.utils.text import file_extension
from agent_sources.utils.time import parse_iso

logger = get_logger(__name__)

ScopeStatus = Literal["idle", "active", "complete"]


@dataclass(slots=True)
class PrefetchRunResult:
    status: ScopeStatus
    prefetched_count: int = 0
    queue_length: int = 0
    skipped: int = 0
    failed: int = 0


class PrefetchOrchestrator:
    """Per-(conversation, message) scope moving idle -> active -> complete; re-enterable."""

    def __init__(
        self,
        settings: Settings,
        links: DownloadLinkService,
        messages: MessageStore,
        records: SourceRecordStore,
        files: FileMetadataStore,
        cache: PrefetchStore,
        behavior: BehaviorTracker,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.links = links
        self.messages = messages
        self.records = records
        self.files = files
        self.cache = cache
        self.behavior = behavior
        self.clock = clock
        # scope -> (status, clock time of the last transition); idle scopes are not stored
        self._scopes: dict[tuple[str, str], tuple[ScopeStatus, float]] = {}

    def status(self, conversation_id: str, message_id: str) -> ScopeStatus:
        state = self._scopes.get((conversation_id, message_id))
        return state[0] if state else "idle"

    async def run(
        self,
        user_id: str,
        conversation_id: str,
        message_id: str,
        base_url: str,
        priority_override: bool = False,
    ) -> PrefetchRunResult:
        """Generate, score and resolve candidates for one message's citations."""
        if not self.settings.prefetch_enabled:
            return PrefetchRunResult(status="idle")
        scope = (conversation_id, message_id)
        try:
            sources = self._cited_sources(user_id, conversation_id, message_id)
            if not sources:
                self._set_scope(scope, "idle")
                return PrefetchRunResult(status="idle")

            self._set_scope(scope, "active")
            candidates = generate_candidates(sources, self.settings.max_concurrent_prefetch)
            by_file = {source.file_id: source for source in sources}
            accepted, skipped = self._accept(user_id, conversation_id, candidates, by_file, priority_override)
            failed = await self._resolve_all(user_id, conversation_id, accepted, base_url)
            return self._finish(scope, accepted, skipped, failed)
        except Exception as exc:
            self._swallow(exc, "run", message_id)
            self._set_scope(scope, "idle")
            return PrefetchRunResult(status="idle")

    async def trigger(
        self,
        user_id: str,
        conversation_id: str,
        message_id: str,
        file_id: str,
        base_url: str,
        priority: float | None = None,
    ) -> PrefetchRunResult:
        """Prefetch a single citation under the same rules; a truthy `priority` skips the confidence gate."""
        if not self.settings.prefetch_enabled:
            return PrefetchRunResult(status="idle")
        scope = (conversation_id, message_id)
        try:
            sources = self._cited_sources(user_id, conversation_id, message_id)
            source = next((item for item in sources if item.file_id == file_id), None)
            if source is None:
                return PrefetchRunResult(status=self.status(conversation_id, message_id))

            self._set_scope(scope, "active")
            candidate = PrefetchCandidate(message_id, file_id, priority=priority or 0, reason="explicit_trigger")
            accepted, skipped = self._accept(
                user_id, conversation_id, [candidate], {file_id: source}, bool(priority)
            )
            failed = await self._resolve_all(user_id, conversation_id, accepted, base_url)
            return self._finish(scope, accepted, skipped, failed)
        except Exception as exc:
            self._swallow(exc, "trigger", message_id)
            self._set_scope(scope, "idle")
            return PrefetchRunResult(status="idle")

    def is_prefetched(self, message_id: str, file_id: str) -> bool:
        return self.cache.lookup_url(message_id, file_id) is not None

    def get_prefetched_url(self, message_id: str, file_id: str) -> str | None:
        entry = self.cache.lookup_url(message_id, file_id)
        return entry.url if entry else None

    def sweep(self) -> int:
        """Drop expired cache entries, stale scopes and idle behavior profiles.

        Returns the number of cache entries removed.
        """
        try:
            removed = self.cache.sweep()
        except Exception as exc:
            self._swallow(exc, "sweep", None)
            return 0
        cutoff = self.clock() - self.settings.prefetch_cache_ttl_seconds
        stale = [
            scope
            for scope, (status, changed_at) in self._scopes.items()
            if status != "active" and changed_at <= cutoff
        ]
        for scope in stale:
            del self._scopes[scope]
        profiles = self.behavior.sweep(self.settings.prefetch_behavior_idle_seconds)
        if removed or stale or profiles:
            logger.info(
                "Swept %d expired prefetch entries, %d scopes, %d behavior profiles",
                removed,
                len(stale),
                profiles,
            )
        return removed

    def forget_conversation(self, user_id: str, conversation_id: str) -> None:
        for scope in [scope for scope in self._scopes if scope[0] == conversation_id]:
            del self._scopes[scope]
        self.behavior.forget_conversation(user_id, conversation_id)

    def clear(self) -> None:
        self.cache.clear()
        self._scopes.clear()

    def _set_scope(self, scope: tuple[str, str], status: ScopeStatus) -> None:
        if status == "idle":
            self._scopes.pop(scope, None)
        else:
            self._scopes[scope] = (status, self.clock())

    def _cited_sources(self, user_id: str, conversation_id: str, message_id: str) -> list[CitedSource]:
        if self.messages.get_owned(message_id, conversation_id, user_id) is None:
            return []
        records = self.records.list_for_message(message_id)
        metadata = self.files.get_many([record.file_id for record in records])
        return [
            _cited_source(index, record, metadata.get(record.file_id))
            for index, record in enumerate(records)
        ]

    def _accept(
        self,
        user_id: str,
        conversation_id: str,
        candidates: Sequence[PrefetchCandidate],
        by_file: dict[str, CitedSource],
        priority_override: bool,
    ) -> tuple[list[PrefetchCandidate], int]:
        profile = self.behavior.profile(user_id, conversation_id)
        accepted: list[PrefetchCandidate] = []
        skipped = 0
        for candidate in candidates:
            if self.cache.get(candidate.key) is not None:
                # complete, in flight, or failed within the cooldown
                accepted.append(candidate)
                continue
            confidence = score_confidence(by_file[candidate.file_id], profile)
            if not priority_override and confidence.value < self.settings.prefetch_threshold:
                skipped += 1
                logger.debug(
                    "Skipping prefetch of %s (confidence %.2f)",
                    candidate.file_id,
                    confidence.value,
                    extra={"ctx_reasons": confidence.reasons},
                )
                continue
            accepted.append(candidate)
        return accepted, skipped

    async def _resolve_all(
        self,
        user_id: str,
        conversation_id: str,
        candidates: Sequence[PrefetchCandidate],
        base_url: str,
    ) -> int:
        claimed = [candidate for candidate in candidates if self._claim(candidate.key)]
        if not claimed:
            return 0
        semaphore = asyncio.Semaphore(self.settings.max_concurrent_prefetch)

        async def resolve(candidate: PrefetchCandidate) -> bool:
            async with semaphore:
                return await self._resolve(user_id, conversation_id, candidate, base_url)

        outcomes = await asyncio.gather(*(resolve(candidate) for candidate in claimed), return_exceptions=True)
        return sum(1 for outcome in outcomes if outcome is not True)

    def _claim(self, key: str) -> bool:
        if self.cache.get(key) is not None:
            return False
        now = self.clock()
        self.cache.set(
            PrefetchCacheEntry(
                key=key,
                status="pending",
                expires_at=now + self.settings.prefetch_cache_ttl_seconds,
                resolved_at=now,
            )
        )
        return True

    async def _resolve(
        self,
        user_id: str,
        conversation_id: str,
        candidate: PrefetchCandidate,
        base_url: str,
    ) -> bool:
        try:
            link = await self.links.request_link(
                user_id,
                candidate.message_id,
                conversation_id,
                candidate.file_id,
                base_url,
                action=PREFETCH_ACTION,
                use_cache=False,
            )
        except Exception as exc:
            now = self.clock()
            self.cache.set(
                PrefetchCacheEntry(
                    key=candidate.key,
                    status="error",
                    expires_at=now + self.settings.prefetch_error_cooldown_seconds,
                    resolved_at=now,
                )
            )
            PREFETCH_RESOLUTIONS.labels(status="error").inc()
            self._swallow(exc, "resolve", candidate.message_id)
            return False

        now = self.clock()
        link_expiry = parse_iso(link.expires_at).timestamp()
        self.cache.set(
            PrefetchCacheEntry(
                key=candidate.key,
                status="complete",
                expires_at=min(link_expiry, now + self.settings.prefetch_cache_ttl_seconds),
                resolved_at=now,
                url=link.download_url,
                link_expires_at=link.expires_at,
                file_name=link.file_name,
                mime_type=link.mime_type,
                storage_type=link.storage_type,
            )
        )
        PREFETCH_RESOLUTIONS.labels(status="complete").inc()
        logger.info(
            "Prefetched %s (%s)",
            candidate.file_id,
            candidate.reason,
            extra={"ctx_message_id": candidate.message_id, "ctx_priority": candidate.priority},
        )
        return True

    def _finish(
        self,
        scope: tuple[str, str],
        accepted: Sequence[PrefetchCandidate],
        skipped: int,
        failed: int,
    ) -> PrefetchRunResult:
        prefetched = pending = 0
        for candidate in accepted:
            entry = self.cache.get(candidate.key)
            if entry is None:
                continue
            if entry.status == "complete":
                prefetched += 1
            elif entry.status == "pending":
                pending += 1
        status: ScopeStatus = "complete" if accepted else "idle"
        self._set_scope(scope, status)
        return PrefetchRunResult(
            status=status,
            prefetched_count=prefetched,
            queue_length=pending,
            skipped=skipped,
            failed=failed,
        )

    @staticmethod
    def _swallow(exc: Exception, stage: str, message_id: str | None) -> None:
        failure = exc if isinstance(exc, OrchestratorFailure) else OrchestratorFailure(f"{stage}: {exc}")
        logger.warning("Prefetch %s failed: %s", stage, failure.detail, extra={"ctx_message_id": message_id})


def _cited_source(index: int, record: SourceRecord, metadata: FileMetadata | None) -> CitedSource:
    name = metadata.display_name if metadata is not None else record.file_name
    return CitedSource(
        message_id=record.message_id,
        file_id=record.file_id,
        index=index,
        file_type=file_extension(name) or file_extension(record.file_name),
        size_bytes=metadata.size_bytes if metadata is not None else None,
    )


__all__ = ["PrefetchOrchestrator", "PrefetchRunResult", "ScopeStatus"]

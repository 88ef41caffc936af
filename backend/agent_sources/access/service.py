"""Foreground download-link requests: validate, issue, audit."""

from __future__ import annotations

import asyncio
from typing import Sequence

from agent_sources.access.links import DEFAULT_MIME_TYPE, LinkIssuer, RequestContext
from agent_sources.access.validator import AccessValidator, ValidatedAccess
from agent_sources.core.config import Settings
from agent_sources.core.errors import AccessDenied, AgentSourceError, BadRequest, NotFound
from agent_sources.core.logging import get_logger
from agent_sources.core.metrics import PREFETCH_CACHE_HITS
from agent_sources.models.entities import IssuedLink, PrefetchCacheEntry
from agent_sources.prefetch.behavior import BehaviorTracker
from agent_sources.prefetch.cache import PrefetchStore
from agent_sources.storage.audit import AuditLogStore, AuditResult
from agent_sources.storage.sources import SourceRecordStore
from agent_sources.utils.text import file_extension

logger = get_logger(__name__)

LINK_ACTION = "download_url"
PREFETCH_ACTION = "prefetch"


class DownloadLinkService:
    """Every call re-validates ownership; the prefetch cache only short-cuts issuance."""

    def __init__(
        self,
        validator: AccessValidator,
        issuer: LinkIssuer,
        audit: AuditLogStore,
        settings: Settings,
        cache: PrefetchStore | None = None,
        behavior: BehaviorTracker | None = None,
        records: SourceRecordStore | None = None,
    ) -> None:
        self.validator = validator
        self.issuer = issuer
        self.audit = audit
        self.settings = settings
        self.cache = cache
        self.behavior = behavior
        self.records = records

    async def request_link(
        self,
        user_id: str,
        message_id: str,
        conversation_id: str,
        file_id: str,
        base_url: str,
        *,
        action: str = LINK_ACTION,
        use_cache: bool = True,
    ) -> IssuedLink:
        try:
            access = self.validator.validate(user_id, message_id, conversation_id, file_id)
        except AccessDenied as exc:
            self._audit(action, user_id, file_id, "denied", message_id, conversation_id, exc.reason)
            raise
        except NotFound:
            self._audit(action, user_id, file_id, "error", message_id, conversation_id, "file_metadata_missing")
            raise

        link = self._from_cache(message_id, file_id) if use_cache else None
        if link is None:
            link = await self.issuer.issue(access, RequestContext(user_id=user_id, base_url=base_url))

        detail = "fallback" if link.fallback else link.storage_type.value
        self._audit(action, user_id, file_id, "success", message_id, conversation_id, detail)
        if action == LINK_ACTION:
            self._record_access(access)
            if self.behavior is not None:
                self.behavior.track_download(user_id, conversation_id, file_extension(link.file_name))
        return link

    async def request_batch(
        self,
        user_id: str,
        message_id: str,
        conversation_id: str,
        file_ids: Sequence[str],
        base_url: str,
    ) -> dict[str, IssuedLink]:
        """Resolve several links; ids that fail for any reason are left out of the result."""
        if len(file_ids) > self.settings.batch_url_limit:
            raise BadRequest(f"Maximum {self.settings.batch_url_limit} files per batch")
        unique_ids = list(dict.fromkeys(file_id for file_id in file_ids if file_id))
        if not unique_ids:
            return {}

        semaphore = asyncio.Semaphore(self.settings.batch_concurrency)

        async def resolve(file_id: str) -> IssuedLink:
            async with semaphore:
                return await self.request_link(user_id, message_id, conversation_id, file_id, base_url)

        results = await asyncio.gather(*(resolve(file_id) for file_id in unique_ids), return_exceptions=True)
        links: dict[str, IssuedLink] = {}
        for file_id, result in zip(unique_ids, results):
            if isinstance(result, BaseException):
                if not isinstance(result, AgentSourceError):
                    logger.error("Batch link for %s failed: %s", file_id, result, extra={"ctx_message_id": message_id})
                continue
            links[file_id] = result
        return links

    def _from_cache(self, message_id: str, file_id: str) -> IssuedLink | None:
        if self.cache is None:
            return None
        entry = self.cache.lookup_url(message_id, file_id)
        if entry is None:
            return None
        PREFETCH_CACHE_HITS.inc()
        return _link_from_entry(entry)

    def _record_access(self, access: ValidatedAccess) -> None:
        """Count a user-initiated request; speculative prefetches never touch the stats."""
        if self.records is None:
            return
        try:
            self.records.record_access(access.record.message_id, access.record.file_id)
        except Exception as exc:
            logger.warning("Could not update access stats for %s: %s", access.record.file_id, exc)

    def _audit(
        self,
        action: str,
        user_id: str,
        file_id: str,
        result: AuditResult,
        message_id: str,
        conversation_id: str,
        detail: str | None,
    ) -> None:
        try:
            self.audit.record(action, user_id, file_id, result, message_id, conversation_id, detail)
        except Exception as exc:
            logger.warning("Audit write failed for %s: %s", file_id, exc)


def _link_from_entry(entry: PrefetchCacheEntry) -> IssuedLink:
    return IssuedLink(
        download_url=entry.url or "",
        expires_at=entry.link_expires_at or "",
        file_name=entry.file_name or "download",
        mime_type=entry.mime_type or DEFAULT_MIME_TYPE,
        storage_type=entry.storage_type,
    )


__all__ = ["DownloadLinkService", "LINK_ACTION", "PREFETCH_ACTION"]

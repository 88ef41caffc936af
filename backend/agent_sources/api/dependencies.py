"""Shared FastAPI dependencies."""

from __future__ import annotations

from functools import lru_cache

from fastapi import Header, HTTPException, Request

from agent_sources.access.links import LinkIssuer
from agent_sources.access.service import DownloadLinkService
from agent_sources.access.signing import HmacUrlSigner, UrlSigner
from agent_sources.access.validator import AccessValidator
from agent_sources.citations.processing import ResponseProcessor
from agent_sources.citations.recorder import CitationRecorder
from agent_sources.core.config import Settings, get_settings
from agent_sources.db.sqlite import SQLiteDatabase
from agent_sources.prefetch.behavior import BehaviorTracker
from agent_sources.prefetch.cache import PrefetchCache
from agent_sources.prefetch.orchestrator import PrefetchOrchestrator
from agent_sources.storage.audit import AuditLogStore
from agent_sources.storage.files import FileMetadataStore
from agent_sources.storage.messages import MessageStore
from agent_sources.storage.sources import SourceRecordStore

_DB: SQLiteDatabase | None = None
_SIGNER: UrlSigner | None = None
_PREFETCH_CACHE: PrefetchCache | None = None
_BEHAVIOR: BehaviorTracker | None = None
_LINK_SERVICE: DownloadLinkService | None = None
_PROCESSOR: ResponseProcessor | None = None
_ORCHESTRATOR: PrefetchOrchestrator | None = None


@lru_cache(maxsize=1)
def get_app_settings() -> Settings:
    return get_settings()


def get_database() -> SQLiteDatabase:
    global _DB
    if _DB is None:
        settings = get_app_settings()
        db = SQLiteDatabase(settings.db_path)
        db.ensure_schema()
        _DB = db
    return _DB


def get_message_store() -> MessageStore:
    return MessageStore(get_database())


def get_file_store() -> FileMetadataStore:
    return FileMetadataStore(get_database())


def get_source_store() -> SourceRecordStore:
    return SourceRecordStore(get_database())


def get_audit_store() -> AuditLogStore:
    return AuditLogStore(get_database())


def get_signer() -> UrlSigner:
    global _SIGNER
    if _SIGNER is None:
        settings = get_app_settings()
        _SIGNER = HmacUrlSigner(settings.object_store_endpoint, settings.signing_secret)
    return _SIGNER


def get_prefetch_cache() -> PrefetchCache:
    global _PREFETCH_CACHE
    if _PREFETCH_CACHE is None:
        _PREFETCH_CACHE = PrefetchCache(max_entries=get_app_settings().prefetch_cache_max_entries)
    return _PREFETCH_CACHE


def get_behavior_tracker() -> BehaviorTracker:
    global _BEHAVIOR
    if _BEHAVIOR is None:
        _BEHAVIOR = BehaviorTracker()
    return _BEHAVIOR


def get_link_service() -> DownloadLinkService:
    global _LINK_SERVICE
    if _LINK_SERVICE is None:
        settings = get_app_settings()
        records = get_source_store()
        _LINK_SERVICE = DownloadLinkService(
            validator=AccessValidator(get_message_store(), records, get_file_store()),
            issuer=LinkIssuer(settings, get_signer()),
            audit=get_audit_store(),
            settings=settings,
            cache=get_prefetch_cache(),
            behavior=get_behavior_tracker(),
            records=records,
        )
    return _LINK_SERVICE


def get_response_processor() -> ResponseProcessor:
    global _PROCESSOR
    if _PROCESSOR is None:
        settings = get_app_settings()
        _PROCESSOR = ResponseProcessor(
            messages=get_message_store(),
            recorder=CitationRecorder(get_file_store(), get_source_store(), settings),
            settings=settings,
        )
    return _PROCESSOR


def get_prefetch_orchestrator() -> PrefetchOrchestrator:
    global _ORCHESTRATOR
    if _ORCHESTRATOR is None:
        _ORCHESTRATOR = PrefetchOrchestrator(
            settings=get_app_settings(),
            links=get_link_service(),
            messages=get_message_store(),
            records=get_source_store(),
            files=get_file_store(),
            cache=get_prefetch_cache(),
            behavior=get_behavior_tracker(),
        )
    return _ORCHESTRATOR


def get_current_user(x_user_id: str | None = Header(default=None)) -> str:
    """Caller identity, as asserted by the upstream auth proxy."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Authentication required")
    return x_user_id.strip()


def get_base_url(request: Request) -> str:
    return str(request.base_url).rstrip("/")


def reset_dependencies() -> None:
    """Drop every cached singleton; the next request rebuilds them."""
    global _DB, _SIGNER, _PREFETCH_CACHE, _BEHAVIOR, _LINK_SERVICE, _PROCESSOR, _ORCHESTRATOR
    if _DB is not None:
        _DB.close()
    get_app_settings.cache_clear()
    get_settings.cache_clear()
    _DB = None
    _SIGNER = None
    _PREFETCH_CACHE = None
    _BEHAVIOR = None
    _LINK_SERVICE = None
    _PROCESSOR = None
    _ORCHESTRATOR = None


__all__ = [
    "get_app_settings",
    "get_database",
    "get_message_store",
    "get_file_store",
    "get_source_store",
    "get_audit_store",
    "get_signer",
    "get_prefetch_cache",
    "get_behavior_tracker",
    "get_link_service",
    "get_response_processor",
    "get_prefetch_orchestrator",
    "get_current_user",
    "get_base_url",
    "reset_dependencies",
]

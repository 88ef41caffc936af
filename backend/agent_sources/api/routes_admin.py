"""Administrative routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from agent_sources.api.dependencies import (
    get_app_settings,
    get_audit_store,
    get_current_user,
    get_database,
    get_prefetch_orchestrator,
)
from agent_sources.core.config import Settings
from agent_sources.core.logging import get_logger
from agent_sources.core.metrics import metrics_response
from agent_sources.db.sqlite import SQLiteDatabase
from agent_sources.models.dto import DeleteConversationResponse, PurgeResponse
from agent_sources.prefetch.orchestrator import PrefetchOrchestrator
from agent_sources.storage.audit import AuditLogStore
from agent_sources.storage.messages import MessageStore
from agent_sources.storage.sources import SourceRecordStore

logger = get_logger(__name__)

router = APIRouter()


@router.post("/admin/purge", response_model=PurgeResponse, summary="Apply citation and audit retention")
async def purge_expired(
    db: SQLiteDatabase = Depends(get_database),
    audit: AuditLogStore = Depends(get_audit_store),
    settings: Settings = Depends(get_app_settings),
) -> PurgeResponse:
    citations = SourceRecordStore(db).purge_older_than(settings.citation_retention_days)
    messages = MessageStore(db).purge_uncited_older_than(settings.citation_retention_days)
    audited = audit.purge_older_than(settings.audit_retention_days)
    logger.info(
        "Retention purge removed %d citations, %d messages, %d audit entries",
        citations,
        messages,
        audited,
    )
    return PurgeResponse(citations=citations, messages=messages, audit=audited)


@router.delete(
    "/conversations/{conversation_id}",
    response_model=DeleteConversationResponse,
    summary="Delete a conversation's citations and message ownership rows",
)
async def delete_conversation(
    conversation_id: str,
    user_id: str = Depends(get_current_user),
    db: SQLiteDatabase = Depends(get_database),
    orchestrator: PrefetchOrchestrator = Depends(get_prefetch_orchestrator),
) -> DeleteConversationResponse:
    messages = MessageStore(db)
    message_ids = messages.list_ids_for_conversation(conversation_id, user_id)
    deleted = SourceRecordStore(db).delete_for_messages(message_ids)
    deleted += messages.delete_conversation(conversation_id, user_id)
    orchestrator.forget_conversation(user_id, conversation_id)
    return DeleteConversationResponse(status="ok" if deleted else "noop", deleted=deleted)


@router.post("/admin/prefetch/clear", summary="Drop every prefetched link")
async def clear_prefetch(
    orchestrator: PrefetchOrchestrator = Depends(get_prefetch_orchestrator),
) -> dict[str, bool]:
    orchestrator.clear()
    return {"ok": True}


@router.get("/metrics", summary="Prometheus metrics")
async def get_metrics():
    return metrics_response()


__all__ = ["router"]

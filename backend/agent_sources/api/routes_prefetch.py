"""Prefetch routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from agent_sources.api.dependencies import (
    get_base_url,
    get_behavior_tracker,
    get_current_user,
    get_message_store,
    get_prefetch_orchestrator,
)
from agent_sources.core.errors import AccessDenied
from agent_sources.models.dto import (
    BehaviorEventRequest,
    PrefetchLookupResponse,
    PrefetchRunRequest,
    PrefetchRunResponse,
    PrefetchTriggerRequest,
)
from agent_sources.prefetch.behavior import BehaviorTracker
from agent_sources.prefetch.orchestrator import PrefetchOrchestrator, PrefetchRunResult
from agent_sources.storage.messages import MessageStore

router = APIRouter()


@router.post("/run", response_model=PrefetchRunResponse, summary="Prefetch likely downloads for a message")
async def run_prefetch(
    request: PrefetchRunRequest,
    user_id: str = Depends(get_current_user),
    base_url: str = Depends(get_base_url),
    orchestrator: PrefetchOrchestrator = Depends(get_prefetch_orchestrator),
) -> PrefetchRunResponse:
    result = await orchestrator.run(
        user_id,
        request.conversation_id,
        request.message_id,
        base_url,
        priority_override=request.priority_override,
    )
    return _to_response(result)


@router.post("/trigger", response_model=PrefetchRunResponse, summary="Prefetch a single cited file")
async def trigger_prefetch(
    request: PrefetchTriggerRequest,
    user_id: str = Depends(get_current_user),
    base_url: str = Depends(get_base_url),
    orchestrator: PrefetchOrchestrator = Depends(get_prefetch_orchestrator),
) -> PrefetchRunResponse:
    result = await orchestrator.trigger(
        user_id,
        request.conversation_id,
        request.message_id,
        request.file_id,
        base_url,
        priority=request.priority,
    )
    return _to_response(result)


@router.get("/{message_id}/{file_id}", response_model=PrefetchLookupResponse, summary="Look up a prefetched link")
async def lookup_prefetched(
    message_id: str,
    file_id: str,
    user_id: str = Depends(get_current_user),
    messages: MessageStore = Depends(get_message_store),
    orchestrator: PrefetchOrchestrator = Depends(get_prefetch_orchestrator),
) -> PrefetchLookupResponse:
    message = messages.get(message_id)
    if message is None or message.user_id != user_id:
        raise AccessDenied("message_not_owned")
    url = orchestrator.get_prefetched_url(message_id, file_id)
    return PrefetchLookupResponse(prefetched=url is not None, url=url)


@router.post("/behavior", summary="Record a download or preview event")
async def record_behavior(
    request: BehaviorEventRequest,
    user_id: str = Depends(get_current_user),
    tracker: BehaviorTracker = Depends(get_behavior_tracker),
) -> dict[str, bool]:
    if request.event == "download":
        tracker.track_download(user_id, request.conversation_id, request.file_type)
    else:
        tracker.track_preview(user_id, request.conversation_id)
    return {"ok": True}


def _to_response(result: PrefetchRunResult) -> PrefetchRunResponse:
    return PrefetchRunResponse(
        status=result.status,
        prefetched_count=result.prefetched_count,
        queue_length=result.queue_length,
        skipped=result.skipped,
        failed=result.failed,
    )


__all__ = ["router"]

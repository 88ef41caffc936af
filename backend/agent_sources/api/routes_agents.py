"""Agent response routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from agent_sources.api.dependencies import get_current_user, get_response_processor
from agent_sources.citations.processing import ResponseProcessor
from agent_sources.core.errors import BadRequest
from agent_sources.models.dto import AgentResponseRequest, AgentResponseResult

router = APIRouter()


@router.post("/responses", response_model=AgentResponseResult, summary="Record citations from an agent response")
async def process_agent_response(
    request: AgentResponseRequest,
    user_id: str = Depends(get_current_user),
    processor: ResponseProcessor = Depends(get_response_processor),
) -> AgentResponseResult:
    if not (request.message_id and request.conversation_id):
        raise BadRequest("Missing required fields: messageId, conversationId")
    processed = processor.process(
        message_id=request.message_id,
        conversation_id=request.conversation_id,
        user_id=user_id,
        content_parts=request.content_parts,
    )
    return AgentResponseResult.model_validate(processed.to_dict())


__all__ = ["router"]

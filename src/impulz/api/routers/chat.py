from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse

from ...domain.chat_models import ChatRequest
from ...infrastructure.repository import CoachingRepository, RepositoryError, get_repo
from ...infrastructure.session_store import (
    ConversationStateStore,
    SessionStore,
    get_conversation_state_store,
    get_session_store,
)
from ...observability.metrics import CHAT_TURNS
from ...services.chat_handler import open_stream, prepare_turn, sse_events
from ...services.llm_client import ChatLLM, LLMConfigurationError, get_llm_client
from ...services.prompt_source import NotionPromptSource, get_prompt_source

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])


def get_chat_llm() -> Optional[ChatLLM]:
    """LLM client, or None when the API key is not configured (answered with 500 after body checks)."""
    try:
        return get_llm_client()
    except LLMConfigurationError as exc:
        logger.error("llm_not_configured", extra={"error": str(exc)})
        return None


@router.post("", response_class=StreamingResponse)
async def chat(
    payload: ChatRequest,
    llm: Optional[ChatLLM] = Depends(get_chat_llm),
    store: SessionStore = Depends(get_session_store),
    states: ConversationStateStore = Depends(get_conversation_state_store),
    repo: CoachingRepository = Depends(get_repo),
    source: NotionPromptSource = Depends(get_prompt_source),
):
    if not payload.message:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Message is required")
    if llm is None:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Missing ANTHROPIC_API_KEY")

    try:
        turn = await prepare_turn(payload, store, states, repo, source)
    except RepositoryError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=exc.operation) from exc

    try:
        first, chunks = await open_stream(llm, turn)
    except Exception as exc:
        logger.error("llm_stream_open_failed", extra={"memory_key": turn.memory_key, "error": str(exc)})
        CHAT_TURNS.labels(outcome="llm_error").inc()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error communicating with the language model: {exc}",
        ) from exc

    headers = {
        "Cache-Control": "no-cache, no-transform",
        "Connection": "keep-alive",
        "X-Accel-Buffering": "no",
    }
    return StreamingResponse(
        sse_events(turn, first, chunks, store, states, repo),
        media_type="text/event-stream",
        headers=headers,
    )

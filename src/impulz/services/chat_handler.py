from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import AsyncIterator, Dict, List, Optional

from ..core.state_machine import parse_assistant_response, update_conversation_state
from ..domain.chat_models import ChatRequest
from ..domain.memory_models import CapabilityType
from ..domain.workflow_models import ConversationState
from ..infrastructure.repository import CoachingRepository, RepositoryError
from ..infrastructure.session_store import ConversationStateStore, SessionStore
from ..observability.metrics import CAPABILITY_TRIGGERS, CHAT_TURNS, STAGE_TRANSITIONS
from .capabilities import challenge_title, should_trigger_capability
from .llm_client import ChatLLM
from .prompt_assembler import PromptProvider, assemble_system_prompt
from .response_processor import process_response
from .streaming import SSE_DONE, sse_text
from .tag_protocol import MemoryTagFilter

logger = logging.getLogger(__name__)


@dataclass
class ChatTurn:
    """Everything one chat turn needs once the prompt is built."""

    message: str
    memory_key: str
    state_key: str
    project_id: Optional[str]
    conversation_id: Optional[str]
    state: ConversationState
    capability: Optional[CapabilityType]
    system: str
    messages: List[Dict[str, str]]


def _memory_key(req: ChatRequest) -> str:
    return req.projectId or req.conversationId or f"session_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def seed_state_from_memory(state: ConversationState, memory) -> ConversationState:
    """Let memory answer stage questions it already knows, so those stages are skipped."""
    update: Dict[str, object] = {}
    if memory.project.description:
        update["has_project_description"] = True
    if memory.project.phase:
        update["project_phase"] = memory.project.phase
    return state.model_copy(update=update) if update else state


async def _save_message(repo: CoachingRepository, conversation_id: str, role: str, content: str, metadata: Optional[dict] = None) -> None:
    try:
        await asyncio.to_thread(repo.add_message, conversation_id, role, content, metadata)
    except (KeyError, RepositoryError) as exc:
        logger.warning("message_not_saved", extra={"conversation_id": conversation_id, "role": role, "error": str(exc)})


async def prepare_turn(
    req: ChatRequest,
    store: SessionStore,
    states: ConversationStateStore,
    repo: CoachingRepository,
    provider: Optional[PromptProvider],
) -> ChatTurn:
    message = req.message or ""
    memory_key = _memory_key(req)
    state_key = req.conversationId or memory_key

    session = await asyncio.to_thread(store.get, memory_key)
    state = seed_state_from_memory(states.get(state_key), session.memory)

    capability, reason = should_trigger_capability(session.memory, message)
    logger.info(
        "chat_turn_start",
        extra={"memory_key": memory_key, "stage": state.current_stage, "capability": capability, "reason": reason},
    )

    assembled = await asyncio.to_thread(
        assemble_system_prompt,
        session.memory,
        session.questions,
        state,
        capability,
        req.locale,
        provider,
    )
    if assembled.stage_prompt is not None:
        logger.info(
            "stage_prompt_used",
            extra={"stage": state.current_stage, "used_fallback": assembled.stage_prompt.used_fallback},
        )

    messages = [{"role": turn.role, "content": turn.text} for turn in req.conversationHistory if turn.text]
    messages.append({"role": "user", "content": message})

    if req.conversationId:
        await _save_message(repo, req.conversationId, "user", message)

    return ChatTurn(
        message=message,
        memory_key=memory_key,
        state_key=state_key,
        project_id=req.projectId,
        conversation_id=req.conversationId,
        state=state,
        capability=capability,
        system=assembled.system,
        messages=messages,
    )


async def open_stream(llm: ChatLLM, turn: ChatTurn) -> tuple[Optional[str], AsyncIterator[str]]:
    """Start the model stream and pull its first chunk so opening errors surface before any byte is sent."""
    chunks = llm.stream(turn.system, turn.messages).__aiter__()
    try:
        first: Optional[str] = await chunks.__anext__()
    except StopAsyncIteration:
        first = None
    return first, chunks


def finalize_turn(
    turn: ChatTurn,
    full_text: str,
    store: SessionStore,
    states: ConversationStateStore,
    repo: CoachingRepository,
) -> None:
    """Apply tags, advance the workflow, and persist the reply. Runs after the stream is delivered."""
    processed = process_response(store, turn.memory_key, full_text)
    memory = store.get(turn.memory_key).memory

    if turn.capability is None:
        extracted = parse_assistant_response(full_text, turn.state.current_stage, turn.message)
        updated = update_conversation_state(seed_state_from_memory(turn.state, memory), extracted)
        states.set(turn.state_key, updated)
        if updated.current_stage != turn.state.current_stage:
            STAGE_TRANSITIONS.labels(from_stage=turn.state.current_stage, to_stage=updated.current_stage).inc()
            logger.info(
                "stage_advanced",
                extra={"state_key": turn.state_key, "from": turn.state.current_stage, "to": updated.current_stage},
            )
    else:
        states.set(turn.state_key, turn.state)

    if turn.conversation_id:
        try:
            repo.add_message(turn.conversation_id, "assistant", processed.clean_text, {"capability": turn.capability})
        except (KeyError, RepositoryError) as exc:
            logger.warning("message_not_saved", extra={"conversation_id": turn.conversation_id, "role": "assistant", "error": str(exc)})

    if turn.capability and turn.project_id:
        try:
            challenge = repo.create_challenge(
                turn.project_id, turn.capability, challenge_title(turn.capability, memory), processed.clean_text
            )
            logger.info("challenge_created", extra={"project_id": turn.project_id, "challenge_id": challenge.id})
        except RepositoryError as exc:
            logger.warning("challenge_not_saved", extra={"project_id": turn.project_id, "error": str(exc)})
        CAPABILITY_TRIGGERS.labels(capability=turn.capability).inc()


async def sse_events(
    turn: ChatTurn,
    first: Optional[str],
    chunks: AsyncIterator[str],
    store: SessionStore,
    states: ConversationStateStore,
    repo: CoachingRepository,
) -> AsyncIterator[str]:
    """SSE body: visible text deltas, then ``[DONE]``.

    ``<memory_update>`` blocks never reach the client. If the model stream fails
    midway, the error is logged and the stream ends without ``[DONE]`` and
    without touching memory or workflow state.
    """
    tag_filter = MemoryTagFilter()
    parts: List[str] = []
    try:
        if first is not None:
            parts.append(first)
            visible = tag_filter.feed(first)
            if visible:
                yield sse_text(visible)
        async for chunk in chunks:
            parts.append(chunk)
            visible = tag_filter.feed(chunk)
            if visible:
                yield sse_text(visible)
    except Exception as exc:
        logger.error("chat_stream_failed", extra={"memory_key": turn.memory_key, "error": str(exc)})
        CHAT_TURNS.labels(outcome="stream_error").inc()
        return

    tail = tag_filter.flush()
    if tail:
        yield sse_text(tail)

    full_text = "".join(parts)
    try:
        await asyncio.to_thread(finalize_turn, turn, full_text, store, states, repo)
        CHAT_TURNS.labels(outcome="ok").inc()
    except Exception as exc:
        logger.error("chat_turn_finalize_failed", extra={"memory_key": turn.memory_key, "error": str(exc)})
        CHAT_TURNS.labels(outcome="finalize_error").inc()
    yield SSE_DONE

from __future__ import annotations

import logging
from typing import Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...domain.models import (
    Conversation,
    ConversationCreate,
    ConversationList,
    ConversationMessages,
    DeleteResult,
    MessageView,
    NamePayload,
)
from ...infrastructure.repository import CoachingRepository, RepositoryError, get_repo
from ...infrastructure.session_store import ConversationStateStore, get_conversation_state_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conversations", tags=["conversations"])


def _backend_error(exc: RepositoryError) -> HTTPException:
    logger.error("conversations_backend_error", extra={"operation": exc.operation})
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=exc.operation)


@router.get("", response_model=Union[ConversationList, ConversationMessages])
def get_conversations(
    project_id: Optional[str] = Query(None),
    conversation_id: Optional[str] = Query(None),
    session_id: Optional[str] = Query(None),
    list_only: bool = Query(False, alias="list"),
    repo: CoachingRepository = Depends(get_repo),
):
    """Sidebar listing with ``list=true&project_id=...``; otherwise the messages of one conversation."""
    if list_only and project_id:
        try:
            return ConversationList(conversations=repo.list_conversations(project_id))
        except RepositoryError as exc:
            raise _backend_error(exc) from exc

    if not (conversation_id or project_id or session_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="conversation_id, project_id, or session_id is required",
        )
    try:
        conv = repo.find_conversation(conversation_id=conversation_id, project_id=project_id, session_id=session_id)
        if conv is None:
            return ConversationMessages()
        messages = repo.list_messages(conv.id)
    except RepositoryError as exc:
        raise _backend_error(exc) from exc
    return ConversationMessages(
        conversation_id=conv.id,
        messages=[
            MessageView(id=m.id, content=m.content, text=m.content, role=m.role, created_at=m.created_at)
            for m in messages
        ],
    )


@router.post("", response_model=Conversation, status_code=status.HTTP_201_CREATED)
def create_conversation(payload: ConversationCreate, repo: CoachingRepository = Depends(get_repo)):
    if not payload.project_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="project_id is required")
    try:
        return repo.create_conversation(payload.project_id, payload.name, payload.topic_id)
    except RepositoryError as exc:
        raise _backend_error(exc) from exc


@router.patch("/{conversation_id}", response_model=Conversation)
def rename_conversation(conversation_id: str, payload: NamePayload, repo: CoachingRepository = Depends(get_repo)):
    if payload.name is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="name is required")
    try:
        conv = repo.rename_conversation(conversation_id, payload.name)
    except RepositoryError as exc:
        raise _backend_error(exc) from exc
    if not conv:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")
    return conv


@router.delete("/{conversation_id}", response_model=DeleteResult)
def delete_conversation(
    conversation_id: str,
    repo: CoachingRepository = Depends(get_repo),
    states: ConversationStateStore = Depends(get_conversation_state_store),
):
    try:
        removed = repo.delete_conversation(conversation_id)
    except RepositoryError as exc:
        raise _backend_error(exc) from exc
    if not removed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")
    states.clear(conversation_id)
    return DeleteResult()

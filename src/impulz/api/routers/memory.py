from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from ...domain.memory_models import MemoryResponse, QuestionCompleteRequest, SessionMemory
from ...infrastructure.repository import CoachingRepository, RepositoryError, get_repo
from ...infrastructure.session_store import SessionStore, get_session_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/memory", tags=["memory"])


def _backend_error(exc: RepositoryError) -> HTTPException:
    logger.error("memory_backend_error", extra={"operation": exc.operation})
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=exc.operation)


def _read(store: SessionStore, project_id: str) -> MemoryResponse:
    try:
        session = store.get(project_id)
    except RepositoryError as exc:
        raise _backend_error(exc) from exc
    logger.info(
        "memory_read",
        extra={
            "project_id": project_id,
            "phase": session.memory.project.phase,
            "activities": len(session.memory.progress.activities),
            "skills": len(session.memory.user.skills),
        },
    )
    return MemoryResponse(memory=session.memory, questions=session.questions)


@router.get("/topics/{topic_id}", response_model=MemoryResponse)
def get_topic_memory(
    topic_id: str,
    repo: CoachingRepository = Depends(get_repo),
    store: SessionStore = Depends(get_session_store),
):
    """Memory of the project behind the topic's latest conversation; empty until the topic has one."""
    try:
        conv = repo.latest_topic_conversation(topic_id)
    except RepositoryError as exc:
        raise _backend_error(exc) from exc
    if conv is None:
        logger.info("topic_without_conversation", extra={"topic_id": topic_id})
        return MemoryResponse(memory=SessionMemory(), questions=[])
    return _read(store, conv.project_id)


@router.get("/{project_id}", response_model=MemoryResponse)
def get_memory(project_id: str, store: SessionStore = Depends(get_session_store)):
    return _read(store, project_id)


@router.post("/{project_id}/questions/{question_id}/complete", response_model=MemoryResponse)
def complete_question(
    project_id: str,
    question_id: str,
    payload: QuestionCompleteRequest,
    store: SessionStore = Depends(get_session_store),
):
    try:
        found = store.complete_question(project_id, question_id, payload.answer)
        session = store.get(project_id)
    except RepositoryError as exc:
        raise _backend_error(exc) from exc
    if not found:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Question not found")
    return MemoryResponse(memory=session.memory, questions=session.questions)

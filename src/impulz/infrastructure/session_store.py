from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from datetime import UTC, datetime
from threading import RLock
from typing import Any, Dict, Iterator, List, Optional, Protocol

from ..core.state_machine import initial_state
from ..domain.memory_models import MemoryPatch, QuestionItem, SessionMemory, SessionState
from ..domain.workflow_models import ConversationState
from ..services import memory as memory_ops
from .repository import RepositoryError

logger = logging.getLogger(__name__)


class SessionBackend(Protocol):
    def load(self, project_id: str) -> Optional[SessionState]: ...
    def save(self, session: SessionState) -> None: ...


class SupabaseSessionBackend:
    """Persists sessions to the ``project_memory`` table, one row per project."""

    def __init__(self, client: Any) -> None:
        self._db = client

    def load(self, project_id: str) -> Optional[SessionState]:
        resp = (
            self._db.table("project_memory")
            .select("memory, questions, created_at, updated_at")
            .eq("project_id", project_id)
            .limit(1)
            .execute()
        )
        rows = resp.data or []
        if not rows:
            return None
        row = rows[0]
        now = datetime.now(UTC)
        stored_questions = row.get("questions")
        return SessionState(
            project_id=project_id,
            memory=SessionMemory.model_validate(row.get("memory") or {}),
            questions=(
                memory_ops.default_questions()
                if stored_questions is None
                else [QuestionItem.model_validate(q) for q in stored_questions]
            ),
            created_at=row.get("created_at") or now,
            updated_at=row.get("updated_at") or now,
        )

    def save(self, session: SessionState) -> None:
        self._db.table("project_memory").upsert(
            {
                "project_id": session.project_id,
                "memory": session.memory.model_dump(mode="json"),
                "questions": [q.model_dump(mode="json") for q in session.questions],
                "updated_at": datetime.now(UTC).isoformat(),
            },
            on_conflict="project_id",
        ).execute()


class SessionStore:
    """Project memory and question backlog, cached in-process.

    Sessions are loaded from the backend on first access and written through on
    every change. Changes to one project are serialized by a per-project lock;
    across processes the last write wins. A failed load raises RepositoryError
    and leaves both the cache and the stored row untouched; a failed save is
    logged and the cached session keeps serving.
    """

    def __init__(self, backend: Optional[SessionBackend] = None) -> None:
        self._backend = backend
        self._sessions: Dict[str, SessionState] = {}
        self._locks: Dict[str, RLock] = {}
        self._lock = RLock()

    @contextmanager
    def locked(self, project_id: str) -> Iterator[None]:
        with self._lock:
            lock = self._locks.setdefault(project_id, RLock())
        with lock:
            yield

    def _load(self, project_id: str) -> Optional[SessionState]:
        if self._backend is None:
            return None
        try:
            return self._backend.load(project_id)
        except Exception as exc:
            logger.error("session_load_failed", extra={"project_id": project_id, "error": str(exc)})
            raise RepositoryError("Failed to load project memory", str(exc)) from exc

    def _persist(self, session: SessionState) -> None:
        if self._backend is None:
            return
        try:
            self._backend.save(session)
        except Exception as exc:
            logger.warning("session_save_failed", extra={"project_id": session.project_id, "error": str(exc)})

    def get(self, project_id: str) -> SessionState:
        """Return the session for ``project_id``, creating a default one if none exists."""
        with self.locked(project_id):
            cached = self._sessions.get(project_id)
            if cached is not None:
                return cached.model_copy(deep=True)
            session = self._load(project_id)
            if session is None:
                logger.info("session_created", extra={"project_id": project_id})
                session = memory_ops.new_session(project_id)
                self._persist(session)
            self._sessions[project_id] = session
            return session.model_copy(deep=True)

    def _store(self, session: SessionState) -> SessionState:
        session.updated_at = datetime.now(UTC)
        self._sessions[session.project_id] = session
        self._persist(session)
        return session

    def apply_memory_patch(self, project_id: str, patch: MemoryPatch) -> SessionMemory:
        with self.locked(project_id):
            session = self.get(project_id)
            session.memory = memory_ops.merge_memory(session.memory, patch)
            self._store(session)
            return session.memory.model_copy(deep=True)

    def replace_backlog(self, project_id: str, new_texts: List[str]) -> List[QuestionItem]:
        with self.locked(project_id):
            session = self.get(project_id)
            session.questions = memory_ops.replace_backlog(session.questions, new_texts)
            self._store(session)
            return list(session.questions)

    def complete_question(self, project_id: str, question_id: str, answer: Optional[str] = None) -> bool:
        with self.locked(project_id):
            session = self.get(project_id)
            session.questions, found = memory_ops.complete_question(session.questions, question_id, answer)
            if found:
                self._store(session)
            return found

    def clear(self, project_id: str) -> None:
        with self._lock:
            self._sessions.pop(project_id, None)


class ConversationStateStore:
    """Workflow state per conversation, kept in-process."""

    def __init__(self) -> None:
        self._states: Dict[str, ConversationState] = {}
        self._lock = RLock()

    def get(self, key: str) -> ConversationState:
        with self._lock:
            state = self._states.get(key)
            if state is None:
                state = initial_state()
                self._states[key] = state
            return state.model_copy(deep=True)

    def set(self, key: str, state: ConversationState) -> None:
        with self._lock:
            self._states[key] = state.model_copy(deep=True)

    def clear(self, key: str) -> None:
        with self._lock:
            self._states.pop(key, None)


_session_store: SessionStore | None = None
_state_store: ConversationStateStore | None = None


def get_session_store() -> SessionStore:
    global _session_store
    if _session_store is not None:
        return _session_store
    backend: Optional[SessionBackend] = None
    if os.getenv("IMPULZ_STORE_IMPL", "memory").lower() == "supabase":
        from .supabase_client import get_supabase

        backend = SupabaseSessionBackend(get_supabase())
    _session_store = SessionStore(backend)
    return _session_store


def get_conversation_state_store() -> ConversationStateStore:
    global _state_store
    if _state_store is None:
        _state_store = ConversationStateStore()
    return _state_store

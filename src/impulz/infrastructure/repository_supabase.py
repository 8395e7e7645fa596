from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any, Callable, List, Optional, TypeVar

from ..domain.models import Challenge, Conversation, Message, Project, Topic
from .repository import CHALLENGE_TTL, RepositoryError, new_session_id

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SupabaseRepository:
    """Repository over the hosted Postgres tables (projects, topics, conversations, messages, challenges).

    Every backend failure surfaces as RepositoryError; a missing row is None.
    """

    def __init__(self, client: Any) -> None:
        self._db = client

    def _run(self, operation: str, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except RepositoryError:
            raise
        except Exception as exc:
            logger.error("repository_failed", extra={"operation": operation, "error": str(exc)})
            raise RepositoryError(operation, str(exc)) from exc

    def _rows(self, resp: Any) -> List[dict]:
        return list(getattr(resp, "data", None) or [])

    def _first(self, resp: Any) -> Optional[dict]:
        rows = self._rows(resp)
        return rows[0] if rows else None

    # --- projects ---
    def list_projects(self) -> List[Project]:
        resp = self._run(
            "Failed to fetch projects",
            lambda: self._db.table("projects").select("*").order("created_at", desc=True).execute(),
        )
        return [Project(**row) for row in self._rows(resp)]

    def get_project(self, project_id: str) -> Optional[Project]:
        resp = self._run(
            "Failed to fetch project",
            lambda: self._db.table("projects").select("*").eq("id", project_id).limit(1).execute(),
        )
        row = self._first(resp)
        return Project(**row) if row else None

    def create_project(self, name: str) -> Project:
        resp = self._run(
            "Failed to create project",
            lambda: self._db.table("projects").insert({"name": name.strip()}).execute(),
        )
        row = self._first(resp)
        if not row:
            raise RepositoryError("Failed to create project", "no row returned")
        return Project(**row)

    def rename_project(self, project_id: str, name: str) -> Optional[Project]:
        now = datetime.now(UTC).isoformat()
        resp = self._run(
            "Failed to update project",
            lambda: self._db.table("projects").update({"name": name.strip(), "updated_at": now}).eq("id", project_id).execute(),
        )
        row = self._first(resp)
        return Project(**row) if row else None

    def delete_project(self, project_id: str) -> bool:
        resp = self._run(
            "Failed to delete project",
            lambda: self._db.table("projects").delete().eq("id", project_id).execute(),
        )
        return bool(self._rows(resp))

    # --- topics ---
    def list_topics(self, project_id: Optional[str] = None) -> List[Topic]:
        def query():
            q = self._db.table("topics").select("*").order("created_at", desc=True)
            if project_id:
                q = q.eq("project_id", project_id)
            return q.execute()

        resp = self._run("Failed to fetch topics", query)
        return [Topic(**row) for row in self._rows(resp)]

    def create_topic(self, project_id: str, name: str) -> Topic:
        resp = self._run(
            "Failed to create topic",
            lambda: self._db.table("topics").insert({"project_id": project_id, "name": name.strip()}).execute(),
        )
        row = self._first(resp)
        if not row:
            raise RepositoryError("Failed to create topic", "no row returned")
        return Topic(**row)

    def rename_topic(self, topic_id: str, name: str) -> Optional[Topic]:
        now = datetime.now(UTC).isoformat()
        resp = self._run(
            "Failed to update topic",
            lambda: self._db.table("topics").update({"name": name.strip(), "updated_at": now}).eq("id", topic_id).execute(),
        )
        row = self._first(resp)
        return Topic(**row) if row else None

    def delete_topic(self, topic_id: str) -> bool:
        resp = self._run(
            "Failed to delete topic",
            lambda: self._db.table("topics").delete().eq("id", topic_id).execute(),
        )
        return bool(self._rows(resp))

    # --- conversations ---
    def list_conversations(self, project_id: str) -> List[Conversation]:
        resp = self._run(
            "Failed to fetch conversations",
            lambda: self._db.table("conversations")
            .select("*")
            .eq("project_id", project_id)
            .order("updated_at", desc=True)
            .execute(),
        )
        return [Conversation(**row) for row in self._rows(resp)]

    def find_conversation(
        self,
        conversation_id: Optional[str] = None,
        project_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> Optional[Conversation]:
        def query():
            q = self._db.table("conversations").select("*")
            if conversation_id:
                q = q.eq("id", conversation_id)
            if project_id and not conversation_id:
                q = q.eq("project_id", project_id)
            if session_id:
                q = q.eq("session_id", session_id)
            return q.order("created_at").limit(1).execute()

        resp = self._run("Failed to fetch conversation", query)
        row = self._first(resp)
        return Conversation(**row) if row else None

    def latest_topic_conversation(self, topic_id: str) -> Optional[Conversation]:
        resp = self._run(
            "Failed to fetch conversation",
            lambda: self._db.table("conversations")
            .select("*")
            .eq("topic_id", topic_id)
            .order("created_at", desc=True)
            .limit(1)
            .execute(),
        )
        row = self._first(resp)
        return Conversation(**row) if row else None

    def create_conversation(self, project_id: str, name: Optional[str] = None, topic_id: Optional[str] = None) -> Conversation:
        record = {
            "project_id": project_id,
            "name": name or "New Conversation",
            "session_id": new_session_id(),
        }
        if topic_id:
            record["topic_id"] = topic_id
        resp = self._run(
            "Failed to create conversation",
            lambda: self._db.table("conversations").insert(record).execute(),
        )
        row = self._first(resp)
        if not row:
            raise RepositoryError("Failed to create conversation", "no row returned")
        return Conversation(**row)

    def rename_conversation(self, conversation_id: str, name: str) -> Optional[Conversation]:
        now = datetime.now(UTC).isoformat()
        resp = self._run(
            "Failed to update conversation",
            lambda: self._db.table("conversations").update({"name": name, "updated_at": now}).eq("id", conversation_id).execute(),
        )
        row = self._first(resp)
        return Conversation(**row) if row else None

    def delete_conversation(self, conversation_id: str) -> bool:
        # messages go with the conversation through the foreign-key cascade
        resp = self._run(
            "Failed to delete conversation",
            lambda: self._db.table("conversations").delete().eq("id", conversation_id).execute(),
        )
        return bool(self._rows(resp))

    # --- messages ---
    def add_message(self, conversation_id: str, role: str, content: str, metadata: Optional[dict] = None) -> Message:
        record = {
            "conversation_id": conversation_id,
            "role": role,
            "content": content,
            "metadata": dict(metadata or {}),
        }
        resp = self._run(
            "Failed to save message",
            lambda: self._db.table("messages").insert(record).execute(),
        )
        row = self._first(resp)
        if not row:
            raise RepositoryError("Failed to save message", "no row returned")
        return Message(**row)

    def list_messages(self, conversation_id: str) -> List[Message]:
        resp = self._run(
            "Failed to fetch messages",
            lambda: self._db.table("messages")
            .select("*")
            .eq("conversation_id", conversation_id)
            .order("created_at")
            .execute(),
        )
        return [Message(**row) for row in self._rows(resp)]

    # --- challenges ---
    def list_challenges(self, project_id: str) -> List[Challenge]:
        resp = self._run(
            "Failed to fetch challenges",
            lambda: self._db.table("challenges")
            .select("*")
            .eq("project_id", project_id)
            .order("created_at", desc=True)
            .execute(),
        )
        return [Challenge(**row) for row in self._rows(resp)]

    def create_challenge(self, project_id: str, document_type: str, title: str, content: str) -> Challenge:
        record = {
            "project_id": project_id,
            "document_type": document_type,
            "title": title,
            "content": content,
            "expires_at": (datetime.now(UTC) + CHALLENGE_TTL).isoformat(),
        }
        resp = self._run(
            "Failed to create challenge",
            lambda: self._db.table("challenges").insert(record).execute(),
        )
        row = self._first(resp)
        if not row:
            raise RepositoryError("Failed to create challenge", "no row returned")
        return Challenge(**row)

    def validate_challenge(self, challenge_id: str) -> Optional[Challenge]:
        now = datetime.now(UTC).isoformat()
        resp = self._run(
            "Failed to validate challenge",
            lambda: self._db.table("challenges").update({"validated_at": now}).eq("id", challenge_id).execute(),
        )
        row = self._first(resp)
        return Challenge(**row) if row else None

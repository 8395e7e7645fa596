from __future__ import annotations

import os
import uuid
from datetime import UTC, datetime, timedelta
from threading import RLock
from typing import Dict, List, Optional, Protocol

from ..domain.models import Challenge, Conversation, Message, Project, Topic

CHALLENGE_TTL = timedelta(days=7)


class RepositoryError(RuntimeError):
    """The storage backend failed. Routers answer 500 with ``operation`` in the message."""

    def __init__(self, operation: str, detail: str = "") -> None:
        super().__init__(f"{operation}: {detail}" if detail else operation)
        self.operation = operation


class CoachingRepository(Protocol):
    # projects
    def list_projects(self) -> List[Project]: ...
    def get_project(self, project_id: str) -> Optional[Project]: ...
    def create_project(self, name: str) -> Project: ...
    def rename_project(self, project_id: str, name: str) -> Optional[Project]: ...
    def delete_project(self, project_id: str) -> bool: ...

    # topics
    def list_topics(self, project_id: Optional[str] = None) -> List[Topic]: ...
    def create_topic(self, project_id: str, name: str) -> Topic: ...
    def rename_topic(self, topic_id: str, name: str) -> Optional[Topic]: ...
    def delete_topic(self, topic_id: str) -> bool: ...

    # conversations
    def list_conversations(self, project_id: str) -> List[Conversation]: ...
    def find_conversation(
        self,
        conversation_id: Optional[str] = None,
        project_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> Optional[Conversation]: ...
    def latest_topic_conversation(self, topic_id: str) -> Optional[Conversation]: ...
    def create_conversation(self, project_id: str, name: Optional[str] = None, topic_id: Optional[str] = None) -> Conversation: ...
    def rename_conversation(self, conversation_id: str, name: str) -> Optional[Conversation]: ...
    def delete_conversation(self, conversation_id: str) -> bool: ...

    # messages
    def add_message(self, conversation_id: str, role: str, content: str, metadata: Optional[dict] = None) -> Message: ...
    def list_messages(self, conversation_id: str) -> List[Message]: ...

    # challenges
    def list_challenges(self, project_id: str) -> List[Challenge]: ...
    def create_challenge(self, project_id: str, document_type: str, title: str, content: str) -> Challenge: ...
    def validate_challenge(self, challenge_id: str) -> Optional[Challenge]: ...


def new_session_id() -> str:
    return f"conv_{int(datetime.now(UTC).timestamp() * 1000)}_{uuid.uuid4().hex[:7]}"


class InMemoryRepository:
    """In-process storage for development and tests.

    Deleting a project removes its topics, conversations, messages and challenges,
    mirroring the foreign-key cascades of the hosted database.
    """

    def __init__(self) -> None:
        self._projects: Dict[str, Project] = {}
        self._topics: Dict[str, Topic] = {}
        self._conversations: Dict[str, Conversation] = {}
        self._messages: Dict[str, List[Message]] = {}
        self._challenges: Dict[str, Challenge] = {}
        self._lock = RLock()

    def _now(self) -> datetime:
        return datetime.now(UTC)

    # --- projects ---
    def list_projects(self) -> List[Project]:
        with self._lock:
            return sorted(self._projects.values(), key=lambda p: p.created_at, reverse=True)

    def get_project(self, project_id: str) -> Optional[Project]:
        with self._lock:
            return self._projects.get(project_id)

    def create_project(self, name: str) -> Project:
        with self._lock:
            now = self._now()
            project = Project(id=uuid.uuid4().hex, name=name.strip(), created_at=now, updated_at=now)
            self._projects[project.id] = project
            return project

    def rename_project(self, project_id: str, name: str) -> Optional[Project]:
        with self._lock:
            proj = self._projects.get(project_id)
            if not proj:
                return None
            proj = proj.model_copy(update={"name": name.strip(), "updated_at": self._now()})
            self._projects[project_id] = proj
            return proj

    def delete_project(self, project_id: str) -> bool:
        with self._lock:
            if self._projects.pop(project_id, None) is None:
                return False
            for tid in [t.id for t in self._topics.values() if t.project_id == project_id]:
                self._topics.pop(tid, None)
            for cid in [c.id for c in self._conversations.values() if c.project_id == project_id]:
                self.delete_conversation(cid)
            for chid in [c.id for c in self._challenges.values() if c.project_id == project_id]:
                self._challenges.pop(chid, None)
            return True

    # --- topics ---
    def list_topics(self, project_id: Optional[str] = None) -> List[Topic]:
        with self._lock:
            topics = [t for t in self._topics.values() if project_id is None or t.project_id == project_id]
            return sorted(topics, key=lambda t: t.created_at, reverse=True)

    def create_topic(self, project_id: str, name: str) -> Topic:
        with self._lock:
            now = self._now()
            topic = Topic(id=uuid.uuid4().hex, project_id=project_id, name=name.strip(), created_at=now, updated_at=now)
            self._topics[topic.id] = topic
            return topic

    def rename_topic(self, topic_id: str, name: str) -> Optional[Topic]:
        with self._lock:
            topic = self._topics.get(topic_id)
            if not topic:
                return None
            topic = topic.model_copy(update={"name": name.strip(), "updated_at": self._now()})
            self._topics[topic_id] = topic
            return topic

    def delete_topic(self, topic_id: str) -> bool:
        with self._lock:
            if self._topics.pop(topic_id, None) is None:
                return False
            # conversations survive their topic
            for cid, conv in list(self._conversations.items()):
                if conv.topic_id == topic_id:
                    self._conversations[cid] = conv.model_copy(update={"topic_id": None})
            return True

    # --- conversations ---
    def list_conversations(self, project_id: str) -> List[Conversation]:
        with self._lock:
            convs = [c for c in self._conversations.values() if c.project_id == project_id]
            return sorted(convs, key=lambda c: c.updated_at or c.created_at, reverse=True)

    def find_conversation(
        self,
        conversation_id: Optional[str] = None,
        project_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> Optional[Conversation]:
        with self._lock:
            for conv in sorted(self._conversations.values(), key=lambda c: c.created_at):
                if conversation_id and conv.id != conversation_id:
                    continue
                if project_id and not conversation_id and conv.project_id != project_id:
                    continue
                if session_id and conv.session_id != session_id:
                    continue
                return conv
            return None

    def latest_topic_conversation(self, topic_id: str) -> Optional[Conversation]:
        with self._lock:
            convs = [c for c in self._conversations.values() if c.topic_id == topic_id]
            # latest created wins; on equal timestamps the later insert wins
            return max(reversed(convs), key=lambda c: c.created_at) if convs else None

    def create_conversation(self, project_id: str, name: Optional[str] = None, topic_id: Optional[str] = None) -> Conversation:
        with self._lock:
            now = self._now()
            conv = Conversation(
                id=uuid.uuid4().hex,
                project_id=project_id,
                topic_id=topic_id,
                name=name or "New Conversation",
                session_id=new_session_id(),
                created_at=now,
                updated_at=now,
            )
            self._conversations[conv.id] = conv
            self._messages[conv.id] = []
            return conv

    def rename_conversation(self, conversation_id: str, name: str) -> Optional[Conversation]:
        with self._lock:
            conv = self._conversations.get(conversation_id)
            if not conv:
                return None
            conv = conv.model_copy(update={"name": name, "updated_at": self._now()})
            self._conversations[conversation_id] = conv
            return conv

    def delete_conversation(self, conversation_id: str) -> bool:
        with self._lock:
            self._messages.pop(conversation_id, None)
            return self._conversations.pop(conversation_id, None) is not None

    # --- messages ---
    def add_message(self, conversation_id: str, role: str, content: str, metadata: Optional[dict] = None) -> Message:
        with self._lock:
            conv = self._conversations.get(conversation_id)
            if not conv:
                raise KeyError("Conversation not found")
            now = self._now()
            msg = Message(
                id=uuid.uuid4().hex,
                conversation_id=conversation_id,
                role=role,
                content=content,
                created_at=now,
                metadata=dict(metadata or {}),
            )
            self._messages.setdefault(conversation_id, []).append(msg)
            # bump conversation updated_at
            self._conversations[conversation_id] = conv.model_copy(update={"updated_at": now})
            return msg

    def list_messages(self, conversation_id: str) -> List[Message]:
        with self._lock:
            return list(self._messages.get(conversation_id, []))

    # --- challenges ---
    def list_challenges(self, project_id: str) -> List[Challenge]:
        with self._lock:
            items = [c for c in self._challenges.values() if c.project_id == project_id]
            return sorted(items, key=lambda c: c.created_at, reverse=True)

    def create_challenge(self, project_id: str, document_type: str, title: str, content: str) -> Challenge:
        with self._lock:
            now = self._now()
            challenge = Challenge(
                id=uuid.uuid4().hex,
                project_id=project_id,
                document_type=document_type,
                title=title,
                content=content,
                expires_at=now + CHALLENGE_TTL,
                created_at=now,
            )
            self._challenges[challenge.id] = challenge
            return challenge

    def validate_challenge(self, challenge_id: str) -> Optional[Challenge]:
        with self._lock:
            challenge = self._challenges.get(challenge_id)
            if not challenge:
                return None
            challenge = challenge.model_copy(update={"validated_at": self._now()})
            self._challenges[challenge_id] = challenge
            return challenge


_repo: CoachingRepository | None = None


def get_repo() -> CoachingRepository:
    global _repo
    if _repo is not None:
        return _repo
    impl = os.getenv("IMPULZ_STORE_IMPL", "memory").lower()
    if impl == "supabase":
        from .repository_supabase import SupabaseRepository
        from .supabase_client import get_supabase

        _repo = SupabaseRepository(get_supabase())
    else:
        _repo = InMemoryRepository()
    return _repo

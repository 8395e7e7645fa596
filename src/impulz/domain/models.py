from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional
from pydantic import BaseModel, Field


DocumentType = Literal["action_plan", "flash_diagnostic", "other"]
DOCUMENT_TYPES = ("action_plan", "flash_diagnostic", "other")
Role = Literal["user", "assistant"]


class Project(BaseModel):
    id: str
    name: str
    created_at: datetime
    updated_at: Optional[datetime] = None


class Topic(BaseModel):
    id: str
    project_id: str
    name: str
    created_at: datetime
    updated_at: Optional[datetime] = None


class Conversation(BaseModel):
    id: str
    project_id: str
    topic_id: Optional[str] = None
    name: str
    session_id: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    metadata: dict = Field(default_factory=dict)


class Message(BaseModel):
    id: str
    conversation_id: str
    role: Role
    content: str
    created_at: datetime
    metadata: dict = Field(default_factory=dict)


class Challenge(BaseModel):
    id: str
    project_id: str
    document_type: DocumentType
    title: str
    content: str
    expires_at: datetime
    validated_at: Optional[datetime] = None
    created_at: datetime


# Request payloads keep fields optional so routers can answer 400 with a message.


class NamePayload(BaseModel):
    name: Optional[str] = None


class TopicCreate(BaseModel):
    project_id: Optional[str] = None
    name: Optional[str] = None


class ConversationCreate(BaseModel):
    project_id: Optional[str] = None
    topic_id: Optional[str] = None
    name: Optional[str] = None


class ChallengeCreate(BaseModel):
    projectId: Optional[str] = None
    documentType: Optional[str] = None
    title: Optional[str] = None
    content: Optional[str] = None


class MessageView(BaseModel):
    id: str
    content: str
    text: str
    role: Role
    created_at: datetime


class ConversationMessages(BaseModel):
    conversation_id: Optional[str] = None
    messages: List[MessageView] = Field(default_factory=list)


class ConversationList(BaseModel):
    conversations: List[Conversation]


class ChallengeList(BaseModel):
    challenges: List[Challenge]


class ChallengeResult(BaseModel):
    success: bool = True
    challenge: Challenge


class DeleteResult(BaseModel):
    success: bool = True

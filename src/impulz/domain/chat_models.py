from __future__ import annotations

from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator


class HistoryTurn(BaseModel):
    """One prior chat turn as sent by the web client.

    The client sends ``{text, isUser}``; ``{role, content}`` is accepted too.
    """

    model_config = ConfigDict(extra="ignore")

    text: str = ""
    isUser: bool = False

    @model_validator(mode="before")
    @classmethod
    def _accept_role_content(cls, data):
        if isinstance(data, dict) and "text" not in data and "content" in data:
            return {"text": data.get("content") or "", "isUser": data.get("role") == "user"}
        return data

    @property
    def role(self) -> Literal["user", "assistant"]:
        return "user" if self.isUser else "assistant"


class ChatRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message: Optional[str] = None
    conversationHistory: List[HistoryTurn] = Field(default_factory=list)
    projectId: Optional[str] = None
    conversationId: Optional[str] = None
    locale: Optional[str] = None

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, List, Literal, Optional
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator

from .workflow_models import ProjectPhase


_PHASES = ("vision", "research", "design", "test", "launch", "growth")

QuestionStatus = Literal["pending", "in_progress", "completed", "skipped"]
QuestionTopic = Literal["project", "progress", "user", "constraints"]
CapabilityType = Literal["flash_diagnostic", "action_plan"]


class ProjectMemory(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    features: List[str] = Field(default_factory=list)
    market_category: Optional[str] = None
    target_segment: Optional[str] = None
    problem: Optional[str] = None
    solution: Optional[str] = None
    phase: Optional[ProjectPhase] = None


class ProgressMemory(BaseModel):
    activities: List[str] = Field(default_factory=list)
    milestones: List[str] = Field(default_factory=list)


class UserConstraints(BaseModel):
    time: Optional[str] = None
    budget: Optional[str] = None
    geography: Optional[str] = None
    lacking: List[str] = Field(default_factory=list)


class UserMemory(BaseModel):
    skills: List[str] = Field(default_factory=list)
    assets: List[str] = Field(default_factory=list)
    constraints: UserConstraints = Field(default_factory=UserConstraints)


class SessionMemory(BaseModel):
    project: ProjectMemory = Field(default_factory=ProjectMemory)
    progress: ProgressMemory = Field(default_factory=ProgressMemory)
    user: UserMemory = Field(default_factory=UserMemory)


class QuestionItem(BaseModel):
    id: str
    question: str
    topic: QuestionTopic = "project"
    status: QuestionStatus = "pending"
    memory_field: Optional[str] = None
    answer: Optional[str] = None


class SessionState(BaseModel):
    project_id: str
    memory: SessionMemory = Field(default_factory=SessionMemory)
    questions: List[QuestionItem] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# Memory patches decoded from <memory_update> tags. Every field is optional;
# unknown keys are dropped. Numbers become text, inside lists too, and a bare
# scalar for a list field becomes a one-element list.
# ---------------------------------------------------------------------------


def _as_text(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


def _as_text_list(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, (str, int, float)) and not isinstance(value, bool):
        return [_as_text(value)]
    if isinstance(value, list):
        return [_as_text(item) for item in value]
    return value


TextList = Annotated[List[str], BeforeValidator(_as_text_list)]
Text = Annotated[str, BeforeValidator(_as_text)]


class _Patch(BaseModel):
    model_config = ConfigDict(extra="ignore")


class ProjectPatch(_Patch):
    name: Optional[Text] = None
    description: Optional[Text] = None
    features: Optional[TextList] = None
    market_category: Optional[Text] = None
    target_segment: Optional[Text] = None
    problem: Optional[Text] = None
    solution: Optional[Text] = None
    phase: Optional[ProjectPhase] = None

    @field_validator("phase", mode="before")
    @classmethod
    def _normalize_phase(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().lower()
            return value if value in _PHASES else None
        return value


class ProgressPatch(_Patch):
    activities: Optional[TextList] = None
    milestones: Optional[TextList] = None


class ConstraintsPatch(_Patch):
    time: Optional[Text] = None
    budget: Optional[Text] = None
    geography: Optional[Text] = None
    lacking: Optional[TextList] = None


class UserPatch(_Patch):
    skills: Optional[TextList] = None
    assets: Optional[TextList] = None
    constraints: Optional[ConstraintsPatch] = None


class MemoryPatch(_Patch):
    project: Optional[ProjectPatch] = None
    progress: Optional[ProgressPatch] = None
    user: Optional[UserPatch] = None

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)


class CapabilityReadiness(BaseModel):
    sufficient: bool
    missing: List[str] = Field(default_factory=list)


class MemoryResponse(BaseModel):
    memory: SessionMemory
    questions: List[QuestionItem]


class QuestionCompleteRequest(BaseModel):
    answer: Optional[str] = None

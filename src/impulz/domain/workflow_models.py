from __future__ import annotations

from typing import List, Literal, Optional
from pydantic import BaseModel, Field


WorkflowStage = Literal[
    "intent_understanding",
    "project_understanding",
    "project_progress",
    "underlying_problem",
    "action",
    "guidance",
    "debrief",
]

IntentCategory = Literal[
    "no_question",
    "personality_assessment",
    "project_assessment",
    "next_steps",
    "personal_efficiency",
    "sell",
    "funding",
    "meet_people",
    "build_product",
    "request_expertise",
    "ideation",
    "other",
]

ProjectPhase = Literal["vision", "research", "design", "test", "launch", "growth"]


class IntentCategorization(BaseModel):
    category: IntentCategory
    confidence: int
    generic: bool = False


class BusinessModel(BaseModel):
    name: Optional[str] = None
    market_category: Optional[str] = None
    client_segment: Optional[str] = None
    problem: Optional[str] = None
    value_proposition: Optional[str] = None
    differentiator: Optional[str] = None
    solution: Optional[str] = None
    pitch: Optional[str] = None


class ConversationState(BaseModel):
    current_stage: WorkflowStage = "intent_understanding"
    intents: List[IntentCategorization] = Field(default_factory=list)
    business_model: Optional[BusinessModel] = None
    project_phase: Optional[ProjectPhase] = None
    is_generic_question: Optional[bool] = None
    has_project_description: Optional[bool] = None
    selected_action: Optional[str] = None
    wants_guidance: Optional[bool] = None
    completed_stages: List[WorkflowStage] = Field(default_factory=list)


class StagePromptResult(BaseModel):
    prompt: str
    used_fallback: bool

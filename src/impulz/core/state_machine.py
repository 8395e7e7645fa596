from __future__ import annotations

import re
from typing import Dict, List, Optional, Tuple

from ..domain.workflow_models import (
    BusinessModel,
    ConversationState,
    IntentCategorization,
    IntentCategory,
    ProjectPhase,
    WorkflowStage,
)

# Coaching workflow, in fixed order. debrief is terminal.
STAGE_ORDER: Tuple[WorkflowStage, ...] = (
    "intent_understanding",
    "project_understanding",
    "project_progress",
    "underlying_problem",
    "action",
    "guidance",
    "debrief",
)

STAGE_NUMBERS: Dict[str, int] = {stage: idx + 1 for idx, stage in enumerate(STAGE_ORDER)}

PROJECT_PHASES: Tuple[ProjectPhase, ...] = ("vision", "research", "design", "test", "launch", "growth")

_ALL_PHASES: List[ProjectPhase] = list(PROJECT_PHASES)

INTENT_PHASE_COMPATIBILITY: Dict[IntentCategory, List[ProjectPhase]] = {
    "no_question": _ALL_PHASES,
    "personality_assessment": _ALL_PHASES,
    "project_assessment": _ALL_PHASES,
    "next_steps": _ALL_PHASES,
    "personal_efficiency": _ALL_PHASES,
    "sell": ["test", "launch", "growth"],
    "funding": ["growth"],
    "meet_people": _ALL_PHASES,
    "build_product": ["design", "test", "launch", "growth"],
    "request_expertise": _ALL_PHASES,
    "ideation": ["vision", "research", "design"],
    "other": _ALL_PHASES,
}

# Labels the model sees in prompts, keyed by intent category.
INTENT_LABELS: Dict[IntentCategory, str] = {
    "no_question": "No question specified",
    "personality_assessment": "Personality assessment",
    "project_assessment": "Project assessment",
    "next_steps": "Next steps",
    "personal_efficiency": "Personal efficiency",
    "sell": "Sell",
    "funding": "Funding",
    "meet_people": "Meet people",
    "build_product": "Build the product",
    "request_expertise": "Request expertise",
    "ideation": "Ideation",
    "other": "Other",
}

_INTENT_ALIASES: Dict[str, IntentCategory] = {
    "no_question_specified": "no_question",
    "build_the_product": "build_product",
}

_BUSINESS_MODEL_FIELDS = (
    "name",
    "market_category",
    "client_segment",
    "problem",
    "value_proposition",
    "differentiator",
    "solution",
    "pitch",
)

_TOON_INTENTS = re.compile(r"intention_categorisation\[\d+\]\{[^}]+\}([\s\S]*?)(?=\n\n|$)", re.IGNORECASE)
_GUIDANCE_WORDS = re.compile(r"guidance|help|guide|support", re.IGNORECASE)
_GUIDANCE_DECLINES = (
    "no guidance",
    "don't need guidance",
    "do not need guidance",
    "don't want guidance",
    "no thanks",
    "no thank you",
    "pas besoin",
    "non merci",
)


def initial_state() -> ConversationState:
    return ConversationState(current_stage="intent_understanding", completed_stages=[])


def should_skip_stage(stage: WorkflowStage, state: ConversationState) -> bool:
    """Return True when ``stage`` must not be entered for ``state``."""
    if stage == "project_understanding":
        return state.is_generic_question is True or state.has_project_description is True
    if stage == "project_progress":
        return state.project_phase is not None
    if stage == "guidance":
        return state.wants_guidance is False
    return False


def get_next_stage(current: WorkflowStage, state: ConversationState) -> Optional[WorkflowStage]:
    idx = STAGE_ORDER.index(current)
    for candidate in STAGE_ORDER[idx + 1 :]:
        if not should_skip_stage(candidate, state):
            return candidate
    return None


def update_conversation_state(state: ConversationState, extracted: Dict[str, object]) -> ConversationState:
    """Fold extracted data into ``state`` and advance to the next stage.

    The current stage is recorded as completed. At ``debrief`` the stage stays put.
    """
    updated = state.model_copy(update=extracted, deep=True)
    if state.current_stage not in updated.completed_stages:
        updated.completed_stages.append(state.current_stage)
    nxt = get_next_stage(state.current_stage, updated)
    if nxt:
        updated.current_stage = nxt
    return updated


def is_intent_compatible_with_phase(intent: IntentCategory, phase: ProjectPhase) -> bool:
    return phase in INTENT_PHASE_COMPATIBILITY.get(intent, [])


def compatibility_rules_text() -> str:
    lines = []
    for intent, phases in INTENT_PHASE_COMPATIBILITY.items():
        lines.append(f"- {INTENT_LABELS[intent]} → {', '.join(phases)}")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Extraction of stage outputs from assistant replies
# ---------------------------------------------------------------------------


def normalize_intent_category(raw: str) -> Optional[IntentCategory]:
    key = re.sub(r"\s+", "_", raw.strip().lower())
    if key in _INTENT_ALIASES:
        return _INTENT_ALIASES[key]
    if key in INTENT_PHASE_COMPATIBILITY:
        return key  # type: ignore[return-value]
    return None


def parse_intent_categorization(response: str) -> List[IntentCategorization]:
    match = _TOON_INTENTS.search(response or "")
    if not match:
        return []
    intents: List[IntentCategorization] = []
    for line in match.group(1).strip().splitlines():
        parts = [p.strip() for p in line.split(",")]
        if len(parts) < 3:
            continue
        category = normalize_intent_category(parts[0])
        digits = re.match(r"\d+", parts[1])
        confidence = int(digits.group(0)) if digits else 0
        generic = parts[2].lower() == "yes"
        if category and confidence > 50:
            intents.append(IntentCategorization(category=category, confidence=confidence, generic=generic))
    return intents


def parse_business_model(response: str) -> Optional[BusinessModel]:
    found: Dict[str, str] = {}
    for field in _BUSINESS_MODEL_FIELDS:
        match = re.search(rf"{field}[:\s]+([^\n]+)", response or "", re.IGNORECASE)
        if match:
            found[field] = match.group(1).strip()
    return BusinessModel(**found) if found else None


def parse_project_phase(response: str) -> Optional[ProjectPhase]:
    lowered = (response or "").lower()
    for phase in PROJECT_PHASES:
        if phase in lowered:
            return phase
    return None


def parse_guidance_preference(response: str, user_message: str = "") -> Optional[bool]:
    said = (user_message or "").lower()
    if any(phrase in said for phrase in _GUIDANCE_DECLINES):
        return False
    if _GUIDANCE_WORDS.search(response or ""):
        return True
    return None


def parse_assistant_response(
    response: str,
    stage: WorkflowStage,
    user_message: str = "",
) -> Dict[str, object]:
    """Pull the structured output of ``stage`` out of an assistant reply."""
    extracted: Dict[str, object] = {}
    if stage == "intent_understanding":
        intents = parse_intent_categorization(response)
        extracted["intents"] = intents
        if intents:
            extracted["is_generic_question"] = any(i.generic for i in intents)
    elif stage == "project_understanding":
        model = parse_business_model(response)
        if model is not None:
            extracted["business_model"] = model
        extracted["has_project_description"] = True
    elif stage == "project_progress":
        phase = parse_project_phase(response)
        if phase:
            extracted["project_phase"] = phase
    elif stage == "action":
        wants = parse_guidance_preference(response, user_message)
        if wants is not None:
            extracted["wants_guidance"] = wants
    return extracted

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..domain.memory_models import (
    CapabilityReadiness,
    CapabilityType,
    MemoryPatch,
    QuestionItem,
    SessionMemory,
    SessionState,
)


DEFAULT_QUESTIONS: Tuple[Dict[str, str], ...] = (
    {
        "id": "q-project-desc",
        "question": "Can you tell me more about your project idea?",
        "topic": "project",
        "memory_field": "project.description",
    },
    {
        "id": "q-progress",
        "question": "What have you already accomplished on this project?",
        "topic": "progress",
        "memory_field": "progress.activities",
    },
    {
        "id": "q-user-skills",
        "question": "What skills or expertise do you bring to this project?",
        "topic": "user",
        "memory_field": "user.skills",
    },
    {
        "id": "q-user-assets",
        "question": "What other assets do you have? (network, partners, data...)",
        "topic": "user",
        "memory_field": "user.assets",
    },
    {
        "id": "q-constraints-lacking",
        "question": "What are you lacking to succeed in this project?",
        "topic": "constraints",
        "memory_field": "user.constraints.lacking",
    },
    {
        "id": "q-constraints-time",
        "question": "How much time can you dedicate to this project?",
        "topic": "constraints",
        "memory_field": "user.constraints.time",
    },
    {
        "id": "q-constraints-budget",
        "question": "What budget do you have available?",
        "topic": "constraints",
        "memory_field": "user.constraints.budget",
    },
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def default_questions() -> List[QuestionItem]:
    return [QuestionItem(status="pending", **q) for q in DEFAULT_QUESTIONS]


def new_session(project_id: str) -> SessionState:
    now = _now()
    return SessionState(
        project_id=project_id,
        memory=SessionMemory(),
        questions=default_questions(),
        created_at=now,
        updated_at=now,
    )


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def _union(existing: Iterable[str], incoming: Optional[Iterable[str]]) -> List[str]:
    out: List[str] = []
    seen = set()
    for item in list(existing) + list(incoming or []):
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out


def merge_memory(existing: SessionMemory, patch: MemoryPatch) -> SessionMemory:
    """Deep-merge ``patch`` into ``existing`` and return a new memory.

    Scalars are overridden when the patch sets them. List fields are unioned in
    first-seen order, so they never shrink and never hold duplicates.
    """
    merged = existing.model_copy(deep=True)

    if patch.project is not None:
        fields = patch.project.model_dump(exclude_none=True)
        features = fields.pop("features", None)
        for key, value in fields.items():
            setattr(merged.project, key, value)
        merged.project.features = _union(merged.project.features, features)

    if patch.progress is not None:
        merged.progress.activities = _union(merged.progress.activities, patch.progress.activities)
        merged.progress.milestones = _union(merged.progress.milestones, patch.progress.milestones)

    if patch.user is not None:
        merged.user.skills = _union(merged.user.skills, patch.user.skills)
        merged.user.assets = _union(merged.user.assets, patch.user.assets)
        constraints = patch.user.constraints
        if constraints is not None:
            scalars = constraints.model_dump(exclude_none=True)
            lacking = scalars.pop("lacking", None)
            for key, value in scalars.items():
                setattr(merged.user.constraints, key, value)
            merged.user.constraints.lacking = _union(merged.user.constraints.lacking, lacking)

    return merged


def expand_dot_paths(flat: Dict[str, Any]) -> Dict[str, Any]:
    """Turn ``{"user.constraints.time": x}`` into ``{"user": {"constraints": {"time": x}}}``."""
    nested: Dict[str, Any] = {}
    for path, value in flat.items():
        keys = str(path).split(".")
        cursor = nested
        for key in keys[:-1]:
            child = cursor.get(key)
            if not isinstance(child, dict):
                child = {}
                cursor[key] = child
            cursor = child
        leaf = keys[-1]
        if isinstance(value, dict) and isinstance(cursor.get(leaf), dict):
            cursor[leaf].update(value)
        else:
            cursor[leaf] = value
    return nested


# ---------------------------------------------------------------------------
# Question backlog
# ---------------------------------------------------------------------------


def replace_backlog(questions: List[QuestionItem], new_texts: List[str]) -> List[QuestionItem]:
    """Keep answered/skipped questions and replace the open ones with ``new_texts``."""
    preserved = [q for q in questions if q.status in ("completed", "skipped")]
    stamp = int(time.time() * 1000)
    fresh = [
        QuestionItem(
            id=f"q-dynamic-{stamp}-{idx}",
            question=text,
            topic="project",
            status="in_progress" if idx == 0 else "pending",
        )
        for idx, text in enumerate(new_texts)
    ]
    return preserved + fresh


def complete_question(questions: List[QuestionItem], question_id: str, answer: Optional[str] = None) -> Tuple[List[QuestionItem], bool]:
    found = False
    out: List[QuestionItem] = []
    for q in questions:
        if q.id == question_id:
            found = True
            q = q.model_copy(update={"status": "completed", "answer": answer})
        out.append(q)
    return out, found


def pending_questions(questions: List[QuestionItem]) -> List[QuestionItem]:
    return [q for q in questions if q.status in ("pending", "in_progress")]


def current_question(questions: List[QuestionItem]) -> Optional[QuestionItem]:
    for q in questions:
        if q.status == "in_progress":
            return q
    return None


# ---------------------------------------------------------------------------
# Completeness
# ---------------------------------------------------------------------------


def memory_gaps(memory: SessionMemory) -> List[str]:
    gaps: List[str] = []
    if not memory.project.description:
        gaps.append("project description")
    if not memory.progress.activities:
        gaps.append("progress/accomplishments")
    if not memory.user.skills:
        gaps.append("user skills")
    if not memory.user.assets:
        gaps.append("user assets")
    if not memory.user.constraints.time:
        gaps.append("time constraints")
    if not memory.user.constraints.budget:
        gaps.append("budget constraints")
    if not memory.project.phase:
        gaps.append("project phase")
    return gaps


def is_memory_sufficient_for(memory: SessionMemory, capability: CapabilityType) -> CapabilityReadiness:
    missing: List[str] = []
    if capability == "flash_diagnostic":
        if not memory.project.description:
            missing.append("project description")
        if len(memory.progress.activities) < 2:
            missing.append("at least 2 progress items")
    elif capability == "action_plan":
        if not memory.project.description:
            missing.append("project description")
        if not memory.project.phase:
            missing.append("project phase")
    return CapabilityReadiness(sufficient=not missing, missing=missing)

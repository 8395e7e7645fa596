import re

from impulz.domain.memory_models import MemoryPatch, QuestionItem, SessionMemory
from impulz.services.memory import (
    DEFAULT_QUESTIONS,
    complete_question,
    current_question,
    expand_dot_paths,
    is_memory_sufficient_for,
    memory_gaps,
    merge_memory,
    new_session,
    pending_questions,
    replace_backlog,
)


def _patch(data):
    return MemoryPatch.model_validate(data)


def test_new_session_seeds_default_backlog():
    session = new_session("p1")
    assert session.project_id == "p1"
    assert [q.id for q in session.questions] == [q["id"] for q in DEFAULT_QUESTIONS]
    assert all(q.status == "pending" for q in session.questions)
    assert session.memory.progress.activities == []
    assert session.memory.user.constraints.lacking == []


def test_skills_are_unioned_without_duplicates():
    memory = merge_memory(SessionMemory(), _patch({"user": {"skills": ["sales"]}}))
    memory = merge_memory(memory, _patch({"user": {"skills": ["sales", "design"]}}))
    assert memory.user.skills == ["sales", "design"]


def test_arrays_never_shrink():
    memory = SessionMemory()
    sequence = [
        {"progress": {"activities": ["interviews", "landing page"]}},
        {"progress": {"activities": ["landing page"]}},
        {"progress": {"activities": []}},
        {"project": {"features": ["chat"]}},
        {"project": {"features": ["search", "chat"]}},
        {"user": {"constraints": {"lacking": ["cto"]}}},
        {"user": {"constraints": {"lacking": ["money", "cto"], "time": "10h/week"}}},
    ]
    previous = memory
    for data in sequence:
        memory = merge_memory(previous, _patch(data))
        for getter in (
            lambda m: m.progress.activities,
            lambda m: m.project.features,
            lambda m: m.user.constraints.lacking,
        ):
            before, after = getter(previous), getter(memory)
            assert after[: len(before)] == before
            assert len(after) == len(set(after))
        previous = memory
    assert memory.progress.activities == ["interviews", "landing page"]
    assert memory.project.features == ["chat", "search"]
    assert memory.user.constraints.lacking == ["cto", "money"]
    assert memory.user.constraints.time == "10h/week"


def test_scalars_override_and_missing_fields_are_kept():
    memory = merge_memory(SessionMemory(), _patch({"project": {"name": "Alpha", "description": "A tool"}}))
    memory = merge_memory(memory, _patch({"project": {"name": "Beta"}}))
    assert memory.project.name == "Beta"
    assert memory.project.description == "A tool"


def test_merge_returns_new_object():
    original = SessionMemory()
    merged = merge_memory(original, _patch({"user": {"assets": ["network"]}}))
    assert original.user.assets == []
    assert merged.user.assets == ["network"]


def test_patch_coercions():
    patch = _patch({"user": {"skills": "marketing", "constraints": {"budget": 5000}}, "project": {"phase": "Launch"}})
    assert patch.user.skills == ["marketing"]
    assert patch.user.constraints.budget == "5000"
    assert patch.project.phase == "launch"
    assert _patch({"project": {"phase": "MVP"}}).project.phase is None
    assert _patch({"unknown": {"x": 1}}).is_empty()
    assert _patch({"user": {"constraints": {"lacking": [3.5, "cofounder"]}}}).user.constraints.lacking == ["3.5", "cofounder"]
    assert _patch({"progress": {"milestones": 12}}).progress.milestones == ["12"]


def test_expand_dot_paths():
    nested = expand_dot_paths(
        {"project.description": "An app", "user.constraints.time": "evenings", "user.skills": ["dev"]}
    )
    assert nested == {
        "project": {"description": "An app"},
        "user": {"constraints": {"time": "evenings"}, "skills": ["dev"]},
    }


def test_replace_backlog_keeps_answered_questions():
    questions = [
        QuestionItem(id="q-a", question="A?", status="completed", answer="yes"),
        QuestionItem(id="q-b", question="B?", status="pending"),
        QuestionItem(id="q-c", question="C?", status="skipped"),
        QuestionItem(id="q-d", question="D?", status="in_progress"),
    ]
    updated = replace_backlog(questions, ["What is your budget?", "Who are your users?"])
    assert [q.id for q in updated[:2]] == ["q-a", "q-c"]
    fresh = updated[2:]
    assert [q.question for q in fresh] == ["What is your budget?", "Who are your users?"]
    assert [q.status for q in fresh] == ["in_progress", "pending"]
    assert all(re.fullmatch(r"q-dynamic-\d+-\d", q.id) for q in fresh)
    assert all(q.topic == "project" for q in fresh)
    assert current_question(updated).question == "What is your budget?"
    assert len(pending_questions(updated)) == 2


def test_complete_question():
    questions = new_session("p").questions
    updated, found = complete_question(questions, "q-user-skills", "python")
    assert found
    item = next(q for q in updated if q.id == "q-user-skills")
    assert item.status == "completed" and item.answer == "python"
    _, found = complete_question(questions, "nope")
    assert not found


def test_memory_gaps_and_readiness():
    memory = SessionMemory()
    assert memory_gaps(memory) == [
        "project description",
        "progress/accomplishments",
        "user skills",
        "user assets",
        "time constraints",
        "budget constraints",
        "project phase",
    ]
    diag = is_memory_sufficient_for(memory, "flash_diagnostic")
    assert not diag.sufficient
    assert diag.missing == ["project description", "at least 2 progress items"]

    memory = merge_memory(
        memory,
        _patch({"project": {"description": "B2B app", "phase": "test"}, "progress": {"activities": ["a", "b"]}}),
    )
    assert is_memory_sufficient_for(memory, "flash_diagnostic").sufficient
    assert is_memory_sufficient_for(memory, "action_plan").sufficient

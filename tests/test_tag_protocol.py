import pytest

from impulz.infrastructure.session_store import SessionStore
from impulz.services.response_processor import process_response
from impulz.services.tag_protocol import (
    ErrorKind,
    MalformedTagError,
    MemoryTagFilter,
    parse_memory_update,
    parse_question_backlog,
    strip_memory_updates,
)


REPLY = (
    "<thinking>User shared their idea.</thinking>\n"
    '<memory_update>{"project.description": "Meal kits for students", "user.skills": ["cooking"]}</memory_update>\n'
    '<question_backlog>["What have you done so far?", "How much time do you have?"]</question_backlog>\n'
    "Great idea! What have you done so far?"
)


def test_parse_memory_update_expands_paths():
    patch = parse_memory_update(REPLY)
    assert patch.project.description == "Meal kits for students"
    assert patch.user.skills == ["cooking"]


def test_no_tags_means_no_change():
    assert parse_memory_update("hello") is None
    assert parse_question_backlog("hello") is None


@pytest.mark.parametrize(
    "payload",
    [
        "{not json}",
        '["a", "b"]',
        '{"user.skills": {"nested": true}}',
    ],
)
def test_malformed_memory_update(payload):
    with pytest.raises(MalformedTagError) as info:
        parse_memory_update(f"<memory_update>{payload}</memory_update>")
    assert info.value.kind is ErrorKind.MALFORMED_LLM_TAG
    assert info.value.tag == "memory_update"


def test_malformed_backlog():
    with pytest.raises(MalformedTagError):
        parse_question_backlog("<question_backlog>{\"q\": 1}</question_backlog>")
    with pytest.raises(MalformedTagError):
        parse_question_backlog("<question_backlog>[1, 2]</question_backlog>")


def test_strip_keeps_thinking_and_backlog():
    clean = strip_memory_updates(REPLY)
    assert "<memory_update>" not in clean
    assert "<thinking>" in clean
    assert "<question_backlog>" in clean
    assert clean.endswith("What have you done so far?")


def test_filter_handles_tags_split_across_chunks():
    text = "Hello <memory_update>{\"a\": 1}</memory_update>world <mem and more"
    for size in (1, 3, 7, 50):
        f = MemoryTagFilter()
        out = "".join(f.feed(text[i : i + size]) for i in range(0, len(text), size)) + f.flush()
        assert out == "Hello world <mem and more"


def test_filter_drops_unclosed_block():
    f = MemoryTagFilter()
    out = f.feed("Hi <memory_update>{\"a\"") + f.flush()
    assert out == "Hi "


def test_process_response_applies_tags():
    store = SessionStore()
    result = process_response(store, "p1", REPLY)
    assert result.memory_updated and result.backlog_updated
    assert not result.errors
    session = store.get("p1")
    assert session.memory.project.description == "Meal kits for students"
    open_questions = [q.question for q in session.questions if q.status in ("pending", "in_progress")]
    assert open_questions == ["What have you done so far?", "How much time do you have?"]


def test_invalid_memory_json_leaves_memory_unchanged():
    store = SessionStore()
    store.get("p1")
    before = store.get("p1").memory
    result = process_response(store, "p1", "<memory_update>{broken</memory_update>Sure.")
    assert not result.memory_updated
    assert result.errors[0].tag == "memory_update"
    assert store.get("p1").memory == before
    assert result.clean_text == "Sure."


def test_numbers_inside_lists_are_kept_as_text():
    store = SessionStore()
    reply = '<memory_update>{"project.description": "Meal kits", "progress.activities": ["Interviewed users", 2024]}</memory_update>Noted.'
    result = process_response(store, "p1", reply)
    assert not result.errors
    memory = store.get("p1").memory
    assert memory.project.description == "Meal kits"
    assert memory.progress.activities == ["Interviewed users", "2024"]

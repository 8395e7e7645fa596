import json

from fastapi.testclient import TestClient

from impulz.api.main import app
from impulz.api.routers import chat as chat_router
from impulz.infrastructure.repository import get_repo
from impulz.infrastructure.session_store import get_conversation_state_store, get_session_store


client = TestClient(app)


def _events(body: str):
    return [line[len("data: "):] for line in body.split("\n\n") if line.startswith("data: ")]


def _texts(body: str) -> str:
    return "".join(json.loads(e)["text"] for e in _events(body) if e != "[DONE]")


INTENT_REPLY = [
    "<thinking>New user.</thinking>\n",
    "<memory_",
    'update>{"project.description": "Bike repair app", "progress.activities": ["survey"]}</memory_update>',
    '<question_backlog>["Who are your first customers?"]</question_backlog>\n',
    "intention_categorisation[1]{intention_category,confidence_level,generic}\n",
    "Funding,80,no\n\n",
    "Who are your first customers?",
]


def test_missing_message_is_400(fake_llm_factory):
    fake_llm_factory(["hi"])
    res = client.post("/api/chat", json={"conversationHistory": []})
    assert res.status_code == 400
    assert res.json()["detail"] == "Message is required"


def test_missing_api_key_is_500(monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    res = client.post("/api/chat", json={"message": "hello"})
    assert res.status_code == 500
    assert "ANTHROPIC_API_KEY" in res.json()["detail"]


def test_stream_hides_memory_updates_and_updates_state(fake_llm_factory):
    llm = fake_llm_factory(INTENT_REPLY)
    res = client.post(
        "/api/chat",
        json={
            "message": "I need money for my bike repair app",
            "conversationHistory": [{"text": "Hi", "isUser": True}, {"text": "Hello!", "isUser": False}],
            "projectId": "proj-1",
            "conversationId": "conv-1",
            "locale": "en",
        },
    )
    assert res.status_code == 200
    assert res.headers["content-type"].startswith("text/event-stream")
    events = _events(res.text)
    assert events[-1] == "[DONE]"
    visible = _texts(res.text)
    assert "memory_update" not in visible
    assert "<question_backlog>" in visible
    assert visible.endswith("Who are your first customers?")

    call = llm.calls[0]
    assert call["messages"] == [
        {"role": "user", "content": "Hi"},
        {"role": "assistant", "content": "Hello!"},
        {"role": "user", "content": "I need money for my bike repair app"},
    ]
    assert "Respond in English." in call["system"]
    assert "Stage 1 – Intent Understanding" in call["system"]

    session = get_session_store().get("proj-1")
    assert session.memory.project.description == "Bike repair app"
    assert session.memory.progress.activities == ["survey"]
    assert [q.question for q in session.questions if q.status == "in_progress"] == ["Who are your first customers?"]

    state = get_conversation_state_store().get("conv-1")
    assert state.intents[0].category == "funding"
    assert state.completed_stages == ["intent_understanding"]
    # description now known from memory, so project understanding is skipped
    assert state.current_stage == "project_progress"


def test_malformed_tag_does_not_break_turn(fake_llm_factory):
    fake_llm_factory(["<memory_update>{oops</memory_update>", "Tell me more."])
    res = client.post("/api/chat", json={"message": "hello", "projectId": "proj-2"})
    assert res.status_code == 200
    assert _texts(res.text) == "Tell me more."
    assert _events(res.text)[-1] == "[DONE]"
    assert get_session_store().get("proj-2").memory.project.description is None


def test_upstream_failure_before_first_chunk_is_500(fake_llm_factory):
    fake_llm_factory(["never"], fail_on_open=True)
    res = client.post("/api/chat", json={"message": "hello"})
    assert res.status_code == 500


def test_mid_stream_failure_ends_stream_without_done(fake_llm_factory):
    fake_llm_factory(["Part one. ", "part two"], fail_after=1)
    res = client.post("/api/chat", json={"message": "hello", "projectId": "proj-3", "conversationId": "conv-3"})
    assert res.status_code == 200
    assert _texts(res.text) == "Part one. "
    assert "[DONE]" not in _events(res.text)
    assert get_conversation_state_store().get("conv-3").completed_stages == []


def test_capability_turn_creates_challenge_and_saves_messages(fake_llm_factory):
    repo = get_repo()
    project = repo.create_project("Kitchn")
    conv = repo.create_conversation(project.id)
    store = get_session_store()
    from impulz.domain.memory_models import MemoryPatch

    store.apply_memory_patch(
        project.id,
        MemoryPatch.model_validate(
            {"project": {"description": "Meal kits"}, "progress": {"activities": ["interviews", "prototype"]}}
        ),
    )
    llm = fake_llm_factory(["## Flash Diagnostic\n", "- Strength: interviews"])
    res = client.post(
        "/api/chat",
        json={"message": "Can you give me a diagnostic?", "projectId": project.id, "conversationId": conv.id},
    )
    assert res.status_code == 200
    assert "CAPABILITY TRIGGERED: Flash Diagnostic" in llm.calls[0]["system"]

    challenges = repo.list_challenges(project.id)
    assert len(challenges) == 1
    assert challenges[0].document_type == "flash_diagnostic"
    assert challenges[0].content == "## Flash Diagnostic\n- Strength: interviews"

    messages = repo.list_messages(conv.id)
    assert [m.role for m in messages] == ["user", "assistant"]
    assert messages[0].content == "Can you give me a diagnostic?"
    # the workflow does not advance on capability turns
    assert get_conversation_state_store().get(conv.id).current_stage == "intent_understanding"


def test_history_accepts_role_content_shape(fake_llm_factory):
    llm = fake_llm_factory(["ok"])
    res = client.post(
        "/chat",
        json={"message": "next", "conversationHistory": [{"role": "user", "content": "first"}]},
    )
    assert res.status_code == 200
    assert llm.calls[0]["messages"][0] == {"role": "user", "content": "first"}


def test_llm_dependency_reports_missing_key(monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    assert chat_router.get_chat_llm() is None


class _UnreadableBackend:
    def load(self, project_id):
        raise ConnectionError("db down")

    def save(self, session):
        raise AssertionError("nothing may be written after a failed load")


def test_memory_load_failure_fails_the_turn(fake_llm_factory):
    from impulz.infrastructure.session_store import SessionStore

    llm = fake_llm_factory(["never sent"])
    app.dependency_overrides[get_session_store] = lambda: SessionStore(_UnreadableBackend())
    try:
        res = client.post("/api/chat", json={"message": "hello", "projectId": "p1"})
    finally:
        app.dependency_overrides.pop(get_session_store, None)
    assert res.status_code == 500
    assert res.json()["detail"] == "Failed to load project memory"
    assert llm.calls == []

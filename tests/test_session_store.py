import threading

import pytest

from impulz.domain.memory_models import MemoryPatch
from impulz.infrastructure import session_store
from impulz.infrastructure.repository import RepositoryError
from impulz.infrastructure.session_store import (
    ConversationStateStore,
    SessionStore,
    SupabaseSessionBackend,
    get_session_store,
)


class RecordingBackend:
    def __init__(self, stored=None, fail_save=False, fail_load=False):
        self.stored = dict(stored or {})
        self.saves = []
        self.fail_save = fail_save
        self.fail_load = fail_load

    def load(self, project_id):
        if self.fail_load:
            raise ConnectionError("db down")
        return self.stored.get(project_id)

    def save(self, session):
        if self.fail_save:
            raise ConnectionError("db down")
        self.saves.append(session.model_copy(deep=True))
        self.stored[session.project_id] = session.model_copy(deep=True)


def test_get_creates_and_persists_default_session():
    backend = RecordingBackend()
    store = SessionStore(backend)
    session = store.get("p1")
    assert len(session.questions) == 7
    assert len(backend.saves) == 1


def test_loaded_session_is_reused():
    backend = RecordingBackend()
    SessionStore(backend).apply_memory_patch("p1", MemoryPatch.model_validate({"user": {"skills": ["ux"]}}))
    fresh = SessionStore(backend)
    assert fresh.get("p1").memory.user.skills == ["ux"]


def test_returned_sessions_are_copies():
    store = SessionStore()
    session = store.get("p1")
    session.memory.user.skills.append("hacked")
    assert store.get("p1").memory.user.skills == []


def test_save_failures_do_not_break_the_store():
    store = SessionStore(RecordingBackend(fail_save=True))
    memory = store.apply_memory_patch("p1", MemoryPatch.model_validate({"project": {"name": "X"}}))
    assert memory.project.name == "X"
    assert store.get("p1").memory.project.name == "X"


def test_load_failure_keeps_the_stored_session():
    backend = RecordingBackend()
    SessionStore(backend).apply_memory_patch("p1", MemoryPatch.model_validate({"user": {"skills": ["sales", "design"]}}))
    saves_before = len(backend.saves)

    backend.fail_load = True
    store = SessionStore(backend)
    with pytest.raises(RepositoryError) as info:
        store.get("p1")
    assert info.value.operation == "Failed to load project memory"
    with pytest.raises(RepositoryError):
        store.apply_memory_patch("p1", MemoryPatch.model_validate({"user": {"skills": ["ops"]}}))
    assert len(backend.saves) == saves_before
    assert backend.stored["p1"].memory.user.skills == ["sales", "design"]

    # nothing was cached, so the next read after recovery sees the stored row
    backend.fail_load = False
    assert store.get("p1").memory.user.skills == ["sales", "design"]


def test_concurrent_patches_are_all_applied():
    store = SessionStore()
    skills = [f"skill-{i}" for i in range(40)]

    def worker(skill):
        store.apply_memory_patch("p1", MemoryPatch.model_validate({"user": {"skills": [skill]}}))

    threads = [threading.Thread(target=worker, args=(s,)) for s in skills]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert sorted(store.get("p1").memory.user.skills) == sorted(skills)


def test_backlog_and_completion():
    store = SessionStore()
    store.complete_question("p1", "q-project-desc", "A marketplace")
    assert not store.complete_question("p1", "missing")
    questions = store.replace_backlog("p1", ["Next?"])
    assert [q.id for q in questions][0] == "q-project-desc"
    assert questions[0].answer == "A marketplace"
    assert questions[-1].status == "in_progress"


def test_conversation_state_store():
    states = ConversationStateStore()
    state = states.get("c1")
    assert state.current_stage == "intent_understanding"
    state.current_stage = "action"
    assert states.get("c1").current_stage == "intent_understanding"
    states.set("c1", state)
    assert states.get("c1").current_stage == "action"
    states.clear("c1")
    assert states.get("c1").current_stage == "intent_understanding"


class _Resp:
    def __init__(self, data):
        self.data = data


class _Query:
    def __init__(self, table, log):
        self.table = table
        self.log = log

    def __getattr__(self, name):
        def call(*args, **kwargs):
            self.log.append((self.table, name, args, kwargs))
            return self

        return call

    def execute(self):
        self.log.append((self.table, "execute", (), {}))
        return _Resp(self.log_rows)


class FakeSupabase:
    def __init__(self, rows=None):
        self.rows = rows or []
        self.log = []

    def table(self, name):
        q = _Query(name, self.log)
        q.log_rows = self.rows
        return q


def test_supabase_backend_upserts_project_memory():
    client = FakeSupabase()
    backend = SupabaseSessionBackend(client)
    assert backend.load("p1") is None
    store = SessionStore(backend)
    store.apply_memory_patch("p1", MemoryPatch.model_validate({"project": {"name": "Z"}}))
    upserts = [entry for entry in client.log if entry[1] == "upsert"]
    assert upserts
    table, _, args, kwargs = upserts[-1]
    assert table == "project_memory"
    assert args[0]["project_id"] == "p1"
    assert args[0]["memory"]["project"]["name"] == "Z"
    assert kwargs == {"on_conflict": "project_id"}


def test_supabase_backend_loads_row():
    client = FakeSupabase(rows=[{"memory": {"user": {"skills": ["sql"]}}, "questions": None, "created_at": None, "updated_at": None}])
    session = SupabaseSessionBackend(client).load("p1")
    assert session.memory.user.skills == ["sql"]
    # a row without a stored backlog gets the default questions
    assert len(session.questions) == 7


def test_supabase_backend_keeps_an_emptied_backlog():
    client = FakeSupabase(rows=[{"memory": {}, "questions": [], "created_at": None, "updated_at": None}])
    assert SupabaseSessionBackend(client).load("p1").questions == []

    backend = RecordingBackend()
    store = SessionStore(backend)
    store.replace_backlog("p1", [])
    assert backend.stored["p1"].questions == []
    assert SessionStore(backend).get("p1").questions == []


def test_factory_defaults_to_memory(monkeypatch):
    monkeypatch.setattr(session_store, "_session_store", None)
    store = get_session_store()
    assert isinstance(store, SessionStore)
    assert store._backend is None
    assert get_session_store() is store

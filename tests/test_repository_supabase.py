import pytest

from impulz.infrastructure import repository as repository_module
from impulz.infrastructure.repository import InMemoryRepository, RepositoryError, get_repo
from impulz.infrastructure.repository_supabase import SupabaseRepository


NOW = "2025-01-01T10:00:00+00:00"


class _Resp:
    def __init__(self, data):
        self.data = data


class _Query:
    def __init__(self, client, table):
        self.client = client
        self.table = table
        self.ops = []

    def __getattr__(self, name):
        def call(*args, **kwargs):
            self.ops.append((name, args, kwargs))
            return self

        return call

    def execute(self):
        self.client.executed.append((self.table, self.ops))
        if self.client.error:
            raise self.client.error
        return _Resp(self.client.responses.get(self.table, []))


class FakeSupabase:
    def __init__(self, responses=None, error=None):
        self.responses = responses or {}
        self.error = error
        self.executed = []

    def table(self, name):
        return _Query(self, name)


def test_list_projects_maps_rows():
    client = FakeSupabase({"projects": [{"id": "p1", "name": "Kitchn", "created_at": NOW, "updated_at": NOW}]})
    projects = SupabaseRepository(client).list_projects()
    assert [p.name for p in projects] == ["Kitchn"]
    table, ops = client.executed[0]
    assert table == "projects"
    assert ("order", ("created_at",), {"desc": True}) in ops


def test_create_conversation_sends_session_id_and_defaults():
    row = {"id": "c1", "project_id": "p1", "name": "New Conversation", "session_id": "conv_1_abc", "created_at": NOW}
    client = FakeSupabase({"conversations": [row]})
    conv = SupabaseRepository(client).create_conversation("p1")
    assert conv.id == "c1"
    _, ops = client.executed[0]
    name, args, _ = ops[0]
    assert name == "insert"
    assert args[0]["name"] == "New Conversation"
    assert args[0]["session_id"].startswith("conv_")
    assert "topic_id" not in args[0]


def test_create_challenge_sets_expiry():
    row = {
        "id": "ch1",
        "project_id": "p1",
        "document_type": "action_plan",
        "title": "Plan",
        "content": "x",
        "expires_at": "2025-01-08T10:00:00+00:00",
        "created_at": NOW,
    }
    client = FakeSupabase({"challenges": [row]})
    challenge = SupabaseRepository(client).create_challenge("p1", "action_plan", "Plan", "x")
    assert challenge.document_type == "action_plan"
    _, ops = client.executed[0]
    assert "expires_at" in ops[0][1][0]


def test_missing_rows():
    repo = SupabaseRepository(FakeSupabase())
    assert repo.get_project("nope") is None
    assert repo.rename_topic("nope", "x") is None
    assert repo.delete_conversation("nope") is False
    assert repo.find_conversation(session_id="nope") is None
    with pytest.raises(RepositoryError):
        repo.create_project("P")


def test_backend_failures_become_repository_errors():
    repo = SupabaseRepository(FakeSupabase(error=ConnectionError("refused")))
    with pytest.raises(RepositoryError) as info:
        repo.list_messages("c1")
    assert info.value.operation == "Failed to fetch messages"


def test_factory_selects_backend(monkeypatch):
    assert isinstance(get_repo(), InMemoryRepository)
    assert get_repo() is get_repo()

    fake = FakeSupabase()
    monkeypatch.setattr(repository_module, "_repo", None)
    monkeypatch.setenv("IMPULZ_STORE_IMPL", "supabase")
    from impulz.infrastructure import supabase_client

    monkeypatch.setattr(supabase_client, "get_supabase", lambda: fake)
    repo = get_repo()
    assert isinstance(repo, SupabaseRepository)


def test_latest_topic_conversation_queries_newest_first():
    row = {"id": "c2", "project_id": "p1", "topic_id": "t1", "name": "Later", "session_id": "conv_2_b", "created_at": NOW}
    client = FakeSupabase({"conversations": [row]})
    conv = SupabaseRepository(client).latest_topic_conversation("t1")
    assert conv.id == "c2"
    table, ops = client.executed[0]
    assert table == "conversations"
    assert ("eq", ("topic_id", "t1"), {}) in ops
    assert ("order", ("created_at",), {"desc": True}) in ops
    assert ("limit", (1,), {}) in ops

    assert SupabaseRepository(FakeSupabase()).latest_topic_conversation("t1") is None


def test_in_memory_latest_topic_conversation():
    repo = InMemoryRepository()
    project = repo.create_project("P")
    topic = repo.create_topic(project.id, "T")
    assert repo.latest_topic_conversation(topic.id) is None
    repo.create_conversation(project.id, topic_id=topic.id)
    second = repo.create_conversation(project.id, topic_id=topic.id)
    repo.create_conversation(project.id)
    assert repo.latest_topic_conversation(topic.id).id == second.id

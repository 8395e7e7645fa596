import sys
from pathlib import Path
from typing import Dict, List, Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
src_str = str(ROOT / "src")
if src_str not in sys.path:
    sys.path.insert(0, src_str)


class FakeLLM:
    """Stands in for the Anthropic client: replays ``chunks`` as a stream."""

    def __init__(self, chunks: List[str], fail_on_open: bool = False, fail_after: Optional[int] = None) -> None:
        self.chunks = list(chunks)
        self.fail_on_open = fail_on_open
        self.fail_after = fail_after
        self.calls: List[Dict[str, object]] = []

    def stream(self, system: str, messages: List[Dict[str, str]]):
        self.calls.append({"system": system, "messages": messages})
        return self._gen()

    async def _gen(self):
        if self.fail_on_open:
            raise RuntimeError("upstream unavailable")
        for idx, chunk in enumerate(self.chunks):
            if self.fail_after is not None and idx == self.fail_after:
                raise RuntimeError("connection reset")
            yield chunk


@pytest.fixture(autouse=True)
def reset_singletons(monkeypatch):
    # Each test starts with in-memory stores and no external services configured
    from impulz.infrastructure import repository, session_store
    from impulz.services import llm_client, prompt_source

    monkeypatch.setattr(repository, "_repo", None, raising=False)
    monkeypatch.setattr(session_store, "_session_store", None, raising=False)
    monkeypatch.setattr(session_store, "_state_store", None, raising=False)
    monkeypatch.setattr(prompt_source, "_source", None, raising=False)
    monkeypatch.setattr(llm_client, "_client", None, raising=False)
    for name in (
        "IMPULZ_STORE_IMPL",
        "NOTION_API_KEY",
        "NOTION_BASE_PROMPT_PAGE_ID",
        "NOTION_KB_DATABASE_ID",
        "SUPABASE_URL",
        "SUPABASE_SERVICE_KEY",
        "SUPABASE_ANON_KEY",
    ):
        monkeypatch.delenv(name, raising=False)
    for number in range(1, 8):
        monkeypatch.delenv(f"NOTION_STAGEPROMPT_{number}", raising=False)


@pytest.fixture
def fake_llm_factory():
    from impulz.api.main import app
    from impulz.api.routers.chat import get_chat_llm

    def install(chunks: List[str], **kwargs) -> FakeLLM:
        llm = FakeLLM(chunks, **kwargs)
        app.dependency_overrides[get_chat_llm] = lambda: llm
        return llm

    yield install
    app.dependency_overrides.pop(get_chat_llm, None)

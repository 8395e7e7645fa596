from __future__ import annotations

import logging
import threading
import time
from typing import Any, Dict, List, Optional, Tuple

import requests

from ..config import AppConfig
from ..domain.knowledge_models import KnowledgeEntry

logger = logging.getLogger(__name__)

NOTION_API = "https://api.notion.com/v1"
NOTION_VERSION = "2022-06-28"
_TIMEOUT = (5, 20)


class PromptSourceError(RuntimeError):
    pass


def rich_text_to_markdown(rich_text: Any) -> str:
    if not isinstance(rich_text, list):
        return ""
    parts: List[str] = []
    for item in rich_text:
        content = item.get("plain_text") or ""
        ann = item.get("annotations") or {}
        if ann.get("bold"):
            content = f"**{content}**"
        if ann.get("italic"):
            content = f"*{content}*"
        if ann.get("code"):
            content = f"`{content}`"
        if ann.get("strikethrough"):
            content = f"~~{content}~~"
        if item.get("href"):
            content = f"[{content}]({item['href']})"
        parts.append(content)
    return "".join(parts)


_BLOCK_PREFIX = {
    "paragraph": "",
    "heading_1": "# ",
    "heading_2": "## ",
    "heading_3": "### ",
    "bulleted_list_item": "- ",
    "numbered_list_item": "1. ",
    "quote": "> ",
    "callout": "> ",
    "toggle": "",
}


class NotionPromptSource:
    """Reads prompt pages and the knowledge base from Notion over its REST API.

    Results are cached for ``prompt_cache_ttl`` seconds when caching is enabled.
    Fetch errors raise PromptSourceError; the ``*_or_none`` helpers log them and
    return None so callers can fall back to built-in text.
    """

    def __init__(self, config: AppConfig, session: Optional[requests.Session] = None) -> None:
        self._cfg = config
        self._http = session or requests.Session()
        self._cache: Dict[str, Tuple[float, Any]] = {}
        self._lock = threading.RLock()

    @property
    def configured(self) -> bool:
        return self._cfg.notion_configured

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._cfg.notion_api_key}",
            "Notion-Version": NOTION_VERSION,
            "Content-Type": "application/json",
        }

    def _cached(self, key: str) -> Optional[Any]:
        if not self._cfg.prompt_cache_enabled:
            return None
        with self._lock:
            hit = self._cache.get(key)
            if hit and time.time() - hit[0] < self._cfg.prompt_cache_ttl:
                return hit[1]
        return None

    def _remember(self, key: str, value: Any) -> None:
        if self._cfg.prompt_cache_enabled:
            with self._lock:
                self._cache[key] = (time.time(), value)

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()
        logger.info("prompt_cache_cleared")

    def _request(self, method: str, path: str, payload: Optional[dict] = None) -> dict:
        try:
            resp = self._http.request(method, f"{NOTION_API}{path}", headers=self._headers(), json=payload, timeout=_TIMEOUT)
            resp.raise_for_status()
            return resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise PromptSourceError(f"Notion {method} {path} failed: {exc}") from exc

    def _children(self, block_id: str) -> List[dict]:
        results: List[dict] = []
        cursor: Optional[str] = None
        while True:
            path = f"/blocks/{block_id}/children?page_size=100"
            if cursor:
                path += f"&start_cursor={cursor}"
            data = self._request("GET", path)
            results.extend(data.get("results") or [])
            if not data.get("has_more"):
                return results
            cursor = data.get("next_cursor")

    def _block_to_markdown(self, block: dict) -> str:
        kind = block.get("type") or ""
        body = block.get(kind) or {}
        if kind == "divider":
            return "---"
        if kind == "code":
            return f"```{body.get('language') or ''}\n{rich_text_to_markdown(body.get('rich_text'))}\n```"
        text = _BLOCK_PREFIX.get(kind, "") + rich_text_to_markdown(body.get("rich_text"))
        if kind == "toggle" and block.get("has_children"):
            inner = self._blocks_to_markdown(self._children(block["id"]))
            if inner:
                text += "\n" + inner
        return text

    def _blocks_to_markdown(self, blocks: List[dict]) -> str:
        lines = [self._block_to_markdown(b) for b in blocks]
        return "\n\n".join(line for line in lines if line.strip())

    def page_markdown(self, page_id: str) -> str:
        key = f"page:{page_id}"
        hit = self._cached(key)
        if hit is not None:
            return hit
        content = self._blocks_to_markdown(self._children(page_id))
        logger.info("notion_page_fetched", extra={"page_id": page_id, "length": len(content)})
        self._remember(key, content)
        return content

    def page_markdown_or_none(self, page_id: Optional[str]) -> Optional[str]:
        if not page_id or not self.configured:
            return None
        try:
            return self.page_markdown(page_id) or None
        except PromptSourceError as exc:
            logger.warning("notion_page_unavailable", extra={"page_id": page_id, "error": str(exc)})
            return None

    def base_prompt(self) -> Optional[str]:
        return self.page_markdown_or_none(self._cfg.notion_base_prompt_page_id)

    def stage_prompt(self, stage_number: int) -> Optional[str]:
        return self.page_markdown_or_none(self._cfg.notion_stage_prompt_page_ids.get(stage_number))

    def knowledge_base(self) -> List[KnowledgeEntry]:
        db_id = self._cfg.notion_kb_database_id
        if not db_id or not self.configured:
            return []
        key = f"kb:{db_id}"
        hit = self._cached(key)
        if hit is not None:
            return hit
        try:
            entries = self._query_knowledge_base(db_id)
        except PromptSourceError as exc:
            logger.warning("knowledge_base_unavailable", extra={"database_id": db_id, "error": str(exc)})
            return []
        self._remember(key, entries)
        return entries

    def _query_knowledge_base(self, db_id: str) -> List[KnowledgeEntry]:
        entries: List[KnowledgeEntry] = []
        payload: Dict[str, Any] = {"page_size": 100}
        while True:
            data = self._request("POST", f"/databases/{db_id}/query", payload)
            for page in data.get("results") or []:
                entries.append(_page_to_entry(page))
            if not data.get("has_more"):
                break
            payload["start_cursor"] = data.get("next_cursor")
        logger.info("knowledge_base_fetched", extra={"database_id": db_id, "count": len(entries)})
        return entries


def _property_text(prop: Optional[dict]) -> str:
    if not prop:
        return ""
    kind = prop.get("type")
    if kind in ("title", "rich_text"):
        return "".join(t.get("plain_text") or "" for t in prop.get(kind) or [])
    if kind == "select":
        return (prop.get("select") or {}).get("name") or ""
    return ""


def _property_options(prop: Optional[dict]) -> List[str]:
    if not prop:
        return []
    if prop.get("type") == "multi_select":
        return [o.get("name") for o in prop.get("multi_select") or [] if o.get("name")]
    text = _property_text(prop)
    return [text] if text else []


def _page_to_entry(page: dict) -> KnowledgeEntry:
    props = page.get("properties") or {}

    def text(*names: str) -> str:
        for name in names:
            value = _property_text(props.get(name))
            if value:
                return value
        return ""

    return KnowledgeEntry(
        id=page.get("id") or "",
        titre=text("Titre", "titre", "Name"),
        thematique=text("Thématique", "Thematique", "thematique") or None,
        question_posee=text("Question posée", "Question posee", "question_posee"),
        maturite=_property_options(props.get("Maturité") or props.get("Maturite") or props.get("maturite")),
        recommandation=text("Recommandation", "recommandation"),
        punchline=text("Punchline", "punchline"),
        challenge=text("Challenge", "challenge"),
    )


_source: NotionPromptSource | None = None


def get_prompt_source() -> NotionPromptSource:
    global _source
    if _source is None:
        _source = NotionPromptSource(AppConfig.from_env())
    return _source

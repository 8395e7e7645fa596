from __future__ import annotations

"""Runtime configuration read from the environment.

Env vars:
- ANTHROPIC_API_KEY (required for chat)
- IMPULZ_LLM_MODEL (default claude-3-5-haiku-20241022)
- IMPULZ_LLM_MAX_TOKENS (default 4096)
- IMPULZ_STORE_IMPL (memory | supabase, default memory)
- SUPABASE_URL, SUPABASE_SERVICE_KEY or SUPABASE_ANON_KEY
- NOTION_API_KEY, NOTION_BASE_PROMPT_PAGE_ID, NOTION_STAGEPROMPT_1..7, NOTION_KB_DATABASE_ID
- IMPULZ_PROMPT_CACHE (default 1), IMPULZ_PROMPT_CACHE_TTL (seconds, default 300)
- IMPULZ_CORS_ORIGINS (comma separated)
"""

import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional


DEFAULT_MODEL = "claude-3-5-haiku-20241022"
DEFAULT_CORS_ORIGINS = "http://localhost:3000,http://127.0.0.1:3000"


def _flag(name: str, default: str) -> bool:
    return (os.getenv(name, default) or "").strip().lower() in ("1", "true", "yes")


@dataclass
class AppConfig:
    anthropic_api_key: Optional[str] = None
    llm_model: str = DEFAULT_MODEL
    llm_max_tokens: int = 4096
    store_impl: str = "memory"
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    notion_api_key: Optional[str] = None
    notion_base_prompt_page_id: Optional[str] = None
    notion_stage_prompt_page_ids: Dict[int, str] = field(default_factory=dict)
    notion_kb_database_id: Optional[str] = None
    prompt_cache_enabled: bool = True
    prompt_cache_ttl: float = 300.0
    cors_origins: List[str] = field(default_factory=list)

    @staticmethod
    def from_env() -> "AppConfig":
        stage_pages: Dict[int, str] = {}
        for number in range(1, 8):
            page_id = os.getenv(f"NOTION_STAGEPROMPT_{number}")
            if page_id:
                stage_pages[number] = page_id
        origins = os.getenv("IMPULZ_CORS_ORIGINS", DEFAULT_CORS_ORIGINS)
        return AppConfig(
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY") or None,
            llm_model=os.getenv("IMPULZ_LLM_MODEL", DEFAULT_MODEL),
            llm_max_tokens=int(os.getenv("IMPULZ_LLM_MAX_TOKENS", "4096")),
            store_impl=(os.getenv("IMPULZ_STORE_IMPL") or "memory").lower(),
            supabase_url=os.getenv("SUPABASE_URL") or None,
            supabase_key=os.getenv("SUPABASE_SERVICE_KEY") or os.getenv("SUPABASE_ANON_KEY") or None,
            notion_api_key=os.getenv("NOTION_API_KEY") or None,
            notion_base_prompt_page_id=os.getenv("NOTION_BASE_PROMPT_PAGE_ID") or None,
            notion_stage_prompt_page_ids=stage_pages,
            notion_kb_database_id=os.getenv("NOTION_KB_DATABASE_ID") or None,
            prompt_cache_enabled=_flag("IMPULZ_PROMPT_CACHE", "1"),
            prompt_cache_ttl=float(os.getenv("IMPULZ_PROMPT_CACHE_TTL", "300")),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        )

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    @property
    def notion_configured(self) -> bool:
        return bool(self.notion_api_key)

from __future__ import annotations

from typing import Optional

from supabase import Client, create_client

from ..config import AppConfig

_client: Optional[Client] = None


def get_supabase() -> Client:
    """Shared Supabase client built from SUPABASE_URL and the service (or anon) key."""
    global _client
    if _client is not None:
        return _client
    cfg = AppConfig.from_env()
    if not cfg.supabase_configured:
        raise RuntimeError(
            "Supabase configuration is missing. Set SUPABASE_URL and SUPABASE_SERVICE_KEY or SUPABASE_ANON_KEY."
        )
    _client = create_client(cfg.supabase_url, cfg.supabase_key)
    return _client

from __future__ import annotations

from functools import lru_cache

from supabase import Client, create_client

from emma.core.config import settings


@lru_cache(maxsize=1)
def get_supabase() -> Client:
    """
    Singleton-style client, created on first use so the memory
    backends work without Supabase credentials.
    """
    if not settings.supabase_url or not settings.supabase_service_key:
        raise RuntimeError("SUPABASE_URL or SUPABASE_SERVICE_KEY not set")

    return create_client(
        settings.supabase_url,
        settings.supabase_service_key,
    )

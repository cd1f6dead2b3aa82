"""
Chutes & Climbs - Supabase Client

Cached factory for the Supabase client shared by all managers.
"""

from functools import lru_cache

from supabase import Client, ClientOptions, create_client

from chutes_climbs.config.settings import get_settings


@lru_cache(maxsize=1)
def get_supabase_client() -> Client:
    """Create and cache a Supabase client using the configured timeout."""
    settings = get_settings()
    options = ClientOptions(
        schema="public",
        postgrest_client_timeout=settings.store_timeout,
    )
    return create_client(settings.supabase_url, settings.supabase_anon_key, options=options)

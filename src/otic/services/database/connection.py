"""Supabase client management."""

from functools import lru_cache

from supabase import Client, create_client

from src.otic.config import settings


@lru_cache(maxsize=1)
def get_supabase_client() -> Client:
    """
    Get the Supabase client with the anon key (singleton).

    Backs the identity provider adapter and the recovery RPCs, which are
    callable before any session exists.

    Example:
        >>> client = get_supabase_client()
        >>> client.rpc("check_recoverable_account", {"email_param": email}).execute()
    """
    return create_client(settings.supabase_url, settings.supabase_anon_key)


@lru_cache(maxsize=1)
def get_supabase_admin_client() -> Client:
    """
    Get the Supabase client with the service role key (singleton).

    Bypasses RLS, so every `user_profiles` query made through it is scoped
    to the subject ID of a session the gateway itself obtained.
    """
    return create_client(settings.supabase_url, settings.supabase_service_role_key)

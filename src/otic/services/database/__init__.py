"""Database connection management."""

from src.otic.services.database.connection import get_supabase_admin_client, get_supabase_client

__all__ = [
    "get_supabase_client",
    "get_supabase_admin_client",
]

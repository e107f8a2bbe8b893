"""Supabase connection helpers shared by the state and holdings stores."""

from .connection import get_supabase_client, SupabaseConfig

__all__ = ["get_supabase_client", "SupabaseConfig"]

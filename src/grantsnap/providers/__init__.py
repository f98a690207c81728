"""Concrete auth providers."""

from grantsnap.providers.supabase import SupabaseAuthProvider

__all__ = ["SupabaseAuthProvider"]

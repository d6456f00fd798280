"""Backend data client dependency."""

from fastapi import Request

from catalog_api.services.supabase_service import SupabaseService


def get_supabase(request: Request) -> SupabaseService:
    """FastAPI dependency returning the client created at application startup."""
    return request.app.state.supabase

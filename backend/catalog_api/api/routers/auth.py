"""Auth helper endpoints for the browser client.

Sign-in and sign-out happen against the hosted identity provider directly;
these endpoints only hand out public configuration and echo the caller's
identity.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status

from catalog_api.api.dependencies.auth import AuthContext, optional_auth

router = APIRouter()


@router.get("/config", summary="Public backend configuration for the frontend")
async def auth_config(request: Request) -> Dict[str, Any]:
    settings = request.app.state.settings
    return {
        "supabaseUrl": settings.supabase_url,
        "supabaseAnonKey": settings.supabase_anon_key,
        "redirectUrl": settings.site_url,
    }


@router.get("/user", summary="Current user summary")
async def current_user(
    auth: Optional[AuthContext] = Depends(optional_auth),
) -> Dict[str, Any]:
    if auth is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "Not authenticated", "message": "No user session found"},
        )

    user = auth.user
    user_metadata = user.get("user_metadata") or {}
    app_metadata = user.get("app_metadata") or {}
    return {
        "user": {
            "id": user.get("id"),
            "email": user.get("email"),
            "name": user_metadata.get("full_name") or user_metadata.get("name"),
            "avatar": user_metadata.get("avatar_url"),
            "provider": app_metadata.get("provider"),
            "role": auth.role,
        }
    }


@router.post("/logout", summary="Acknowledge logout")
async def logout() -> Dict[str, str]:
    # Sessions are held by the identity provider; nothing to clean up here.
    return {"message": "Logout successful"}

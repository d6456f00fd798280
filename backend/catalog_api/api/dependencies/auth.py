"""Bearer-token authentication and admin gating.

Tokens are verified against the hosted identity provider on every request;
the resolved user and role live only on ``request.state`` for the duration
of that request.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Request, status

from catalog_api.api.dependencies.backend import get_supabase
from catalog_api.services.supabase_service import SupabaseService

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


@dataclass
class AuthContext:
    user: Dict[str, Any]
    access_token: str

    @property
    def role(self) -> str:
        return user_role(self.user)


def user_role(user: Dict[str, Any]) -> str:
    """Role from user metadata, then app metadata; defaults to ``user``."""
    user_metadata = user.get("user_metadata") or {}
    app_metadata = user.get("app_metadata") or {}
    return user_metadata.get("role") or app_metadata.get("role") or "user"


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": "Unauthorized", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def extract_bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization")
    if not header or not header.startswith(BEARER_PREFIX):
        return None
    token = header[len(BEARER_PREFIX):].strip()
    return token or None


def _attach(request: Request, context: AuthContext) -> AuthContext:
    request.state.user = context.user
    request.state.access_token = context.access_token
    return context


async def require_auth(
    request: Request,
    supabase: SupabaseService = Depends(get_supabase),
) -> AuthContext:
    token = extract_bearer_token(request)
    if token is None:
        raise _unauthorized("Missing or invalid authorization header")

    result = await supabase.verify_token(token)
    if not result.ok or not result.data:
        raise _unauthorized("Invalid or expired token")

    return _attach(request, AuthContext(user=result.data, access_token=token))


def require_admin(
    request: Request,
    context: AuthContext = Depends(require_auth),
) -> AuthContext:
    if context is None or not context.user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "Unauthorized", "message": "Authentication required"},
        )

    if context.role != "admin":
        logger.info(
            f"Admin access denied for user {context.user.get('id')} on "
            f"{request.method} {request.url.path}"
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": "Forbidden", "message": "Admin access required"},
        )
    return context


async def optional_auth(
    request: Request,
    supabase: SupabaseService = Depends(get_supabase),
) -> Optional[AuthContext]:
    """Authenticate when possible; never fails the request."""
    token = extract_bearer_token(request)
    if token is None:
        return None

    try:
        result = await supabase.verify_token(token)
    except Exception as e:
        logger.warning(f"Optional auth verification failed, continuing anonymously: {e}")
        return None

    if not result.ok or not result.data:
        return None
    return _attach(request, AuthContext(user=result.data, access_token=token))

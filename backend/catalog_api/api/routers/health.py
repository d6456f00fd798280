"""Health probe and frontend token endpoints."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from catalog_api.api.dependencies.backend import get_supabase
from catalog_api.security.frontend_token import (
    generate_frontend_token,
    seconds_until_rotation,
)
from catalog_api.services.supabase_service import SupabaseService

logger = logging.getLogger(__name__)
router = APIRouter()


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("", summary="Service and database health")
async def health(
    request: Request,
    supabase: SupabaseService = Depends(get_supabase),
) -> JSONResponse:
    """Report API and database status; 503 when the database probe fails.

    Used by the hosting platform's health checks, so it must answer even
    when the backend is down.
    """
    settings = request.app.state.settings
    try:
        db_healthy = await supabase.health_check()
    except Exception as e:
        logger.error(f"Health check failed: {e}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "ERROR",
                "timestamp": _timestamp(),
                "services": {"database": "unknown", "api": "unhealthy"},
                "error": "Health check failed",
            },
        )

    body: dict[str, Any] = {
        "status": "OK" if db_healthy else "DEGRADED",
        "timestamp": _timestamp(),
        "services": {
            "database": "healthy" if db_healthy else "unhealthy",
            "api": "healthy",
        },
        "environment": settings.environment,
        "version": settings.app_version,
    }
    if not db_healthy:
        logger.warning("Database health probe failed")
    return JSONResponse(
        status_code=status.HTTP_200_OK if db_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=body,
    )


@router.get("/token", summary="Issue the current frontend token")
async def frontend_token(request: Request) -> dict[str, Any]:
    try:
        token = generate_frontend_token(request.app.state.settings.api_secret)
    except Exception as e:
        logger.error(f"Token generation failed: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to generate token", "message": "Token generation failed"},
        ) from e

    return {
        "token": token,
        "expires_in": seconds_until_rotation(),
        "token_type": "Bearer",
    }

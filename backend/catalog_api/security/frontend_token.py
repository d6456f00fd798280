"""Time-bucketed HMAC token the bundled frontend uses to identify itself.

The token is a soft signal, not an authorization boundary: anyone who can
load the frontend can fetch it from ``/api/health/token``.
"""

from __future__ import annotations

import hashlib
import hmac
import time

from fastapi import HTTPException, Request, status

TOKEN_WINDOW_SECONDS = 5 * 60
TOKEN_LENGTH = 16
TOKEN_HEADER = "X-Frontend-Token"


def _window(now: float) -> int:
    return int((now * 1000) // (TOKEN_WINDOW_SECONDS * 1000))


def generate_frontend_token(secret: str, now: float | None = None) -> str:
    """HMAC-SHA256 of ``frontend-<window>`` truncated to 16 hex characters."""
    current = time.time() if now is None else now
    signature = hmac.new(
        secret.encode("utf-8"),
        f"frontend-{_window(current)}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return signature[:TOKEN_LENGTH]


def seconds_until_rotation(now: float | None = None) -> int:
    """Seconds left before the current token window closes."""
    current = time.time() if now is None else now
    next_window_start = (_window(current) + 1) * TOKEN_WINDOW_SECONDS
    return max(1, int(next_window_start - current))


def verify_frontend_token(request: Request) -> bool:
    """Mark the request as coming from the bundled frontend when the header matches."""
    settings = request.app.state.settings
    presented = request.headers.get(TOKEN_HEADER)
    verified = bool(presented) and hmac.compare_digest(
        presented.encode("utf-8"),
        generate_frontend_token(settings.api_secret).encode("utf-8"),
    )
    request.state.is_verified_frontend = verified
    return verified


def frontend_only_access(request: Request) -> None:
    """Reject requests that did not present a current frontend token."""
    if not getattr(request.state, "is_verified_frontend", False) and not verify_frontend_token(request):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": "Forbidden: Frontend access only",
                "message": "This endpoint only accepts requests from the official frontend application",
            },
        )


def enforce_frontend_token(request: Request) -> None:
    """Apply :func:`frontend_only_access` when REQUIRE_FRONTEND_TOKEN is enabled."""
    if request.app.state.settings.require_frontend_token:
        frontend_only_access(request)

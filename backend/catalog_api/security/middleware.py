"""Origin allow-listing, API rate limiting and security response headers."""

from __future__ import annotations

import logging
from urllib.parse import urlparse

from fastapi import Request
from fastapi.responses import JSONResponse, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from catalog_api.security.rate_limit import RateLimiter, client_identifier

logger = logging.getLogger(__name__)

API_PREFIX = "/api"

CORS_ALLOW_METHODS = "GET, POST, PUT, DELETE, OPTIONS"
CORS_ALLOW_HEADERS = (
    "Origin, X-Requested-With, Content-Type, Accept, Authorization, X-Frontend-Token"
)

CONTENT_SECURITY_POLICY = "; ".join(
    [
        "default-src 'self'",
        "script-src 'self' 'unsafe-inline'",
        "style-src 'self' 'unsafe-inline'",
        "img-src 'self' data:",
        "connect-src 'self'",
        "font-src 'self'",
        "object-src 'none'",
        "media-src 'self'",
        "frame-src 'none'",
    ]
)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Content-Security-Policy": CONTENT_SECURITY_POLICY,
    "X-Download-Options": "noopen",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}
API_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
    "Surrogate-Control": "no-store",
}
HSTS_VALUE = "max-age=31536000; includeSubDomains"
DEFAULT_PORTS = {"http": 80, "https": 443}


def is_api_path(path: str) -> bool:
    return path == API_PREFIX or path.startswith(API_PREFIX + "/")


def is_same_host(referer: str | None, host: str | None) -> bool:
    """True when the Referer URL points at the host serving this request.

    Hostname and port are compared; userinfo is ignored and a missing port
    means the default port of the Referer's scheme.
    """
    if not referer or not host:
        return False
    try:
        page = urlparse(referer)
        served = urlparse(f"//{host}")
        default_port = DEFAULT_PORTS.get(page.scheme.lower())
        page_port = page.port or default_port
        served_port = served.port or default_port
    except ValueError:
        return False
    if not page.hostname or not served.hostname:
        return False
    return page.hostname == served.hostname and page_port == served_port


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Attach browser hardening headers; API responses are never cached."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers.update(SECURITY_HEADERS)

        forwarded_proto = request.headers.get("X-Forwarded-Proto", "")
        if request.url.scheme == "https" or forwarded_proto.lower() == "https":
            response.headers["Strict-Transport-Security"] = HSTS_VALUE

        if is_api_path(request.url.path):
            response.headers.update(API_CACHE_HEADERS)
        return response


class OriginGuardMiddleware(BaseHTTPMiddleware):
    """Only serve API requests from allow-listed origins or same-host pages.

    A request with an ``Origin`` header must match the allow-list exactly.
    Without one, the ``Referer`` host must equal the request ``Host``.
    Anything else is rejected with 403 before routing.
    """

    def __init__(self, app: ASGIApp, allowed_origins: list[str]) -> None:
        super().__init__(app)
        self.allowed_origins = set(allowed_origins)

    async def dispatch(self, request: Request, call_next):
        if not is_api_path(request.url.path):
            return await call_next(request)

        origin = request.headers.get("Origin")
        referer = request.headers.get("Referer")
        if origin:
            logger.debug(f"Request Origin: {origin}")

        if origin and origin in self.allowed_origins:
            allow_origin = origin
        elif not origin and is_same_host(referer, request.headers.get("Host")):
            allow_origin = "*"
        else:
            logger.warning(
                f"Rejected {request.method} {request.url.path}: origin={origin!r} referer={referer!r}"
            )
            return JSONResponse(
                status_code=403,
                content={
                    "error": "Forbidden: Invalid origin",
                    "message": "Requests are only allowed from the official frontend",
                },
            )

        cors_headers = {
            "Access-Control-Allow-Origin": allow_origin,
            "Access-Control-Allow-Credentials": "true",
            "Access-Control-Allow-Methods": CORS_ALLOW_METHODS,
            "Access-Control-Allow-Headers": CORS_ALLOW_HEADERS,
        }

        if request.method == "OPTIONS":
            return Response(status_code=200, headers=cors_headers)

        response = await call_next(request)
        response.headers.update(cors_headers)
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Count every API request, matched route or not, against the limiter."""

    def __init__(self, app: ASGIApp, limiter: RateLimiter) -> None:
        super().__init__(app)
        self.limiter = limiter

    async def dispatch(self, request: Request, call_next):
        if not is_api_path(request.url.path):
            return await call_next(request)

        identifier = client_identifier(request)
        decision = self.limiter.hit(identifier)
        if not decision.allowed:
            logger.warning(f"Rate limit exceeded for {identifier} ({decision.count} requests)")
            return JSONResponse(
                status_code=429,
                content={
                    "error": "Too many requests",
                    "message": "Rate limit exceeded. Please try again later.",
                },
                headers={"Retry-After": str(decision.retry_after(self.limiter.clock()))},
            )
        return await call_next(request)

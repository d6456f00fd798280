"""Request security: origin checks, headers, rate limiting, frontend token."""
from catalog_api.security.frontend_token import (
    enforce_frontend_token,
    frontend_only_access,
    generate_frontend_token,
    verify_frontend_token,
)
from catalog_api.security.middleware import (
    OriginGuardMiddleware,
    RateLimitMiddleware,
    SecurityHeadersMiddleware,
)
from catalog_api.security.rate_limit import RateLimiter

__all__ = [
    "OriginGuardMiddleware",
    "RateLimitMiddleware",
    "RateLimiter",
    "SecurityHeadersMiddleware",
    "enforce_frontend_token",
    "frontend_only_access",
    "generate_frontend_token",
    "verify_frontend_token",
]

"""FastAPI application bootstrap: middleware, routers and error handlers."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from catalog_api.api.routers import auth, health, products
from catalog_api.core.config import Settings, get_settings
from catalog_api.core.logging_config import configure_logging
from catalog_api.security import (
    OriginGuardMiddleware,
    RateLimitMiddleware,
    RateLimiter,
    SecurityHeadersMiddleware,
    verify_frontend_token,
)
from catalog_api.services.supabase_service import SupabaseService

logger = logging.getLogger(__name__)


def _register_exception_handlers(app: FastAPI) -> None:
    """Render every error as a flat ``{"error", "message"}`` JSON body."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404 and exc.detail == "Not Found":
            content = {
                "error": "Not found",
                "message": f"Route {request.method} {request.url.path} not found",
            }
        elif isinstance(exc.detail, dict):
            content = exc.detail
        else:
            content = {"error": str(exc.detail), "message": str(exc.detail)}
        return JSONResponse(
            status_code=exc.status_code,
            content=content,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        if errors:
            first = errors[0]
            location = ".".join(str(part) for part in first.get("loc", ()))
            message = f"{location}: {first.get('msg', 'invalid value')}"
        else:
            message = "Request could not be parsed"
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "message": message},
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(
            f"Unhandled error on {request.method} {request.url.path}: {exc}",
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "message": "An unexpected error occurred",
            },
        )


def create_app(
    settings: Settings | None = None,
    supabase: SupabaseService | None = None,
    rate_limiter: RateLimiter | None = None,
) -> FastAPI:
    """Instantiate the FastAPI app.

    The backend client is created once at startup (or injected) and shared
    through ``app.state``; startup fails when the backend is not configured.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        created: SupabaseService | None = None
        if app.state.supabase is None:
            created = SupabaseService.from_settings(settings)
            app.state.supabase = created
            logger.info(f"Backend client initialized for {created.url}")
        try:
            yield
        finally:
            if created is not None:
                await created.aclose()
                app.state.supabase = None

    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
    app.state.settings = settings
    app.state.supabase = supabase
    app.state.rate_limiter = rate_limiter or RateLimiter.from_settings(settings)

    allowed_origins = settings.allowed_origins
    logger.info(f"[CORS] Allowed origins: {allowed_origins}")

    # Last added runs first: headers, then origin guard, then rate limit
    app.add_middleware(RateLimitMiddleware, limiter=app.state.rate_limiter)
    app.add_middleware(OriginGuardMiddleware, allowed_origins=allowed_origins)
    app.add_middleware(SecurityHeadersMiddleware)

    _register_exception_handlers(app)

    api_dependencies = [Depends(verify_frontend_token)]
    app.include_router(
        health.router, prefix="/api/health", tags=["health"], dependencies=api_dependencies
    )
    app.include_router(
        auth.router, prefix="/api/auth", tags=["auth"], dependencies=api_dependencies
    )
    app.include_router(
        products.router, prefix="/api/products", tags=["products"], dependencies=api_dependencies
    )

    if settings.static_dir:
        static_path = Path(settings.static_dir)
        if static_path.is_dir():
            app.mount("/", StaticFiles(directory=static_path, html=True), name="frontend")
            logger.info(f"Serving frontend from {static_path}")
        else:
            logger.warning(f"STATIC_DIR {static_path} does not exist; frontend not mounted")

    return app


app = create_app()

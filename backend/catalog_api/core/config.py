"""Centralized application settings using pydantic settings."""

import secrets
from functools import lru_cache
from pathlib import Path
from typing import List, Literal

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file
# Look for .env in the backend directory or project root
env_path = Path(__file__).parent.parent.parent / ".env"
if not env_path.exists():
    env_path = Path(__file__).parent.parent.parent.parent / ".env"
load_dotenv(dotenv_path=env_path, override=False)

LOCAL_DEV_ORIGINS = ["http://localhost:3000", "http://127.0.0.1:3000"]


class Settings(BaseSettings):
    """Environment-aware configuration (backend credentials, CORS, rate limits)."""

    # Application settings
    app_name: str = "Product Catalog API"
    app_version: str = "1.0.0"
    environment: str = "development"
    log_level: str = "INFO"

    # Hosted backend (Supabase REST + auth endpoints)
    supabase_url: str | None = Field(
        default=None,
        description="Base URL of the hosted backend project",
    )
    supabase_anon_key: str | None = Field(
        default=None,
        description="Anonymous (public) API key of the hosted backend",
    )
    backend_timeout_seconds: float = 10.0

    # Frontend / auth redirect
    site_url: str = "http://localhost:3000"

    # Production hosts folded into the origin allow-list
    vercel_url: str | None = None
    custom_domain: str | None = None
    extra_allowed_origins: str | None = Field(
        default=None,
        description="Comma-separated list of additional allowed origins",
    )

    # Shared secret for the frontend HMAC token. Regenerated on every
    # process start when unset, which invalidates outstanding tokens.
    api_secret: str = Field(default_factory=lambda: secrets.token_hex(32))
    require_frontend_token: bool = False

    # Rate limiting
    rate_limit_max_requests: int = Field(default=100, ge=1)
    rate_limit_window_seconds: int = Field(default=15 * 60, ge=1)
    rate_limit_storage: Literal["memory", "redis"] = "memory"
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL (used when rate_limit_storage=redis)",
    )

    # Optional pre-built frontend served at /
    static_dir: str | None = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("supabase_url", mode="before")
    @classmethod
    def strip_trailing_slash(cls, v: str | None) -> str | None:
        """Normalize the backend URL so path joins stay predictable."""
        if v is None:
            return None
        v = str(v).strip().rstrip("/")
        return v or None

    @field_validator("vercel_url", "custom_domain", mode="before")
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @property
    def allowed_origins(self) -> List[str]:
        """Fixed local-dev origins plus the configured production hosts."""
        origins = list(LOCAL_DEV_ORIGINS)
        if self.vercel_url:
            origins.append(f"https://{self.vercel_url}")
        if self.custom_domain:
            origins.append(f"https://{self.custom_domain}")
        if self.extra_allowed_origins:
            origins.extend(
                origin.strip().rstrip("/")
                for origin in self.extra_allowed_origins.split(",")
                if origin.strip()
            )
        return origins


@lru_cache
def get_settings() -> Settings:
    """Provide singleton-like access for dependency injection."""
    return Settings()

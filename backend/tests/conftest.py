"""Shared fixtures: an in-memory backend double and a configured app."""

from __future__ import annotations

from typing import Any

import pytest
from fastapi.testclient import TestClient

from catalog_api.core.config import Settings
from catalog_api.main import create_app
from catalog_api.security.rate_limit import RateLimiter
from catalog_api.services.supabase_service import BackendError, ServiceResult

ALLOWED_ORIGIN = "http://localhost:3000"
ADMIN_TOKEN = "admin-token"
USER_TOKEN = "user-token"

ADMIN_USER = {
    "id": "admin-1",
    "email": "admin@example.com",
    "user_metadata": {"role": "admin", "full_name": "Ada Admin", "avatar_url": "https://img/a.png"},
    "app_metadata": {"provider": "google"},
}
REGULAR_USER = {
    "id": "user-1",
    "email": "user@example.com",
    "user_metadata": {"name": "Uma User"},
    "app_metadata": {"provider": "github"},
}


class FakeSupabaseService:
    """Mimics SupabaseService against an in-memory products table."""

    def __init__(self) -> None:
        self.users: dict[str, dict[str, Any]] = {
            ADMIN_TOKEN: ADMIN_USER,
            USER_TOKEN: REGULAR_USER,
        }
        self.products: dict[int, dict[str, Any]] = {}
        self.calls: list[tuple[str, Any]] = []
        self.fail: set[str] = set()
        self.healthy = True
        self._next_id = 1

    def seed(self, **fields: Any) -> dict[str, Any]:
        row = {
            "id": self._next_id,
            "title": "Dune",
            "author": "Frank Herbert",
            "price": 9.99,
            "base_price": 9.99,
            "currency_id": "USD",
            "available_quantity": 1,
            "created_at": f"2024-01-{self._next_id:02d}T00:00:00+00:00",
        }
        row.update(fields)
        self.products[row["id"]] = row
        self._next_id = max(self._next_id, row["id"]) + 1
        return row

    def _error(self, operation: str) -> ServiceResult | None:
        if operation in self.fail:
            return ServiceResult(error=BackendError(message=f"{operation} exploded", code="XX000"))
        return None

    async def verify_token(self, access_token: str) -> ServiceResult:
        self.calls.append(("verify_token", access_token))
        user = self.users.get(access_token)
        if user is None:
            return ServiceResult(error=BackendError(message="invalid JWT", status_code=401))
        return ServiceResult(data=user)

    async def list_products(self, search: str | None = None, access_token: str | None = None) -> ServiceResult:
        self.calls.append(("list_products", (search, access_token)))
        error = self._error("list_products")
        if error:
            return error
        rows = sorted(self.products.values(), key=lambda r: r["created_at"], reverse=True)
        if search:
            term = search.lower()
            rows = [r for r in rows if term in r["title"].lower() or term in r["author"].lower()]
        return ServiceResult(data=rows[:100])

    async def get_product(self, product_id: int, access_token: str | None = None) -> ServiceResult:
        self.calls.append(("get_product", (product_id, access_token)))
        error = self._error("get_product")
        if error:
            return error
        return ServiceResult(data=self.products.get(product_id))

    async def create_product(self, data: dict[str, Any], access_token: str) -> ServiceResult:
        self.calls.append(("create_product", (data, access_token)))
        error = self._error("create_product")
        if error:
            return error
        return ServiceResult(data=self.seed(**data))

    async def update_product(self, product_id: int, data: dict[str, Any], access_token: str) -> ServiceResult:
        self.calls.append(("update_product", (product_id, data, access_token)))
        error = self._error("update_product")
        if error:
            return error
        row = self.products.get(product_id)
        if row is None:
            return ServiceResult(data=None)
        row.update(data)
        return ServiceResult(data=row)

    async def delete_product(self, product_id: int, access_token: str) -> ServiceResult:
        self.calls.append(("delete_product", (product_id, access_token)))
        error = self._error("delete_product")
        if error:
            return error
        self.products.pop(product_id, None)
        return ServiceResult()

    async def health_check(self) -> bool:
        self.calls.append(("health_check", None))
        return self.healthy

    def called(self, operation: str) -> bool:
        return any(name == operation for name, _ in self.calls)


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "supabase_url": "https://project.supabase.co",
        "supabase_anon_key": "anon-key",
        "api_secret": "test-secret",
        "environment": "test",
        "vercel_url": None,
        "custom_domain": None,
        "extra_allowed_origins": None,
        "static_dir": None,
        "rate_limit_storage": "memory",
        "require_frontend_token": False,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def fake_backend() -> FakeSupabaseService:
    return FakeSupabaseService()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def app(settings, fake_backend, clock):
    limiter = RateLimiter(
        max_requests=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window_seconds,
        clock=clock,
    )
    return create_app(settings=settings, supabase=fake_backend, rate_limiter=limiter)


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app, headers={"Origin": ALLOWED_ORIGIN})

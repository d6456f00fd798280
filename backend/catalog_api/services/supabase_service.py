"""HTTP client for the hosted backend's REST (PostgREST) and auth endpoints.

One unauthenticated client is created with the service and shared for public
reads. Calls that carry a user's access token get a fresh client scoped to
that token, closed as soon as the call completes, so credentials never leak
between requests.

Every public method returns a :class:`ServiceResult`; transport failures and
upstream errors are reported through ``result.error`` and never raised.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

import httpx

from catalog_api.core.config import Settings
from catalog_api.utils.validation import sanitize_search_term

logger = logging.getLogger(__name__)

PRODUCTS_PATH = "/rest/v1/products"
AUTH_USER_PATH = "/auth/v1/user"
LIST_LIMIT = 100


class BackendConfigError(RuntimeError):
    """Raised when the backend URL or anonymous key is not configured."""


@dataclass
class BackendError:
    message: str
    code: str | None = None
    status_code: int | None = None


@dataclass
class ServiceResult:
    data: Any = None
    error: BackendError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _error_from_response(response: httpx.Response) -> BackendError:
    """Build a BackendError from a PostgREST or auth error body."""
    message = f"HTTP {response.status_code}"
    code: str | None = None
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        message = (
            body.get("message")
            or body.get("msg")
            or body.get("error_description")
            or body.get("error")
            or message
        )
        raw_code = body.get("code") or body.get("error_code")
        code = str(raw_code) if raw_code is not None else None
    elif response.text:
        message = response.text[:200]
    return BackendError(message=str(message), code=code, status_code=response.status_code)


class SupabaseService:
    """Product CRUD, token verification and health probe over httpx."""

    def __init__(
        self,
        url: str,
        anon_key: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not url or not anon_key:
            raise BackendConfigError(
                "Missing backend configuration. Please check SUPABASE_URL and "
                "SUPABASE_ANON_KEY environment variables."
            )
        self.url = url.rstrip("/")
        self.anon_key = anon_key
        self._timeout = timeout
        self._transport = transport
        self._public_client = self._build_client(anon_key)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "SupabaseService":
        return cls(
            settings.supabase_url or "",
            settings.supabase_anon_key or "",
            timeout=settings.backend_timeout_seconds,
            transport=transport,
        )

    def _build_client(self, bearer: str) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.url,
            headers={
                "apikey": self.anon_key,
                "Authorization": f"Bearer {bearer}",
            },
            timeout=self._timeout,
            transport=self._transport,
        )

    @asynccontextmanager
    async def _client_for(self, access_token: str | None) -> AsyncIterator[httpx.AsyncClient]:
        if not access_token:
            yield self._public_client
            return
        client = self._build_client(access_token)
        try:
            yield client
        finally:
            await client.aclose()

    async def _send(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        access_token: str | None = None,
        params: dict[str, str] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> ServiceResult:
        try:
            async with self._client_for(access_token) as client:
                response = await client.request(
                    method, path, params=params, json=json, headers=headers
                )
        except httpx.TimeoutException as e:
            logger.warning(f"Backend timeout during {operation}: {e}")
            return ServiceResult(error=BackendError(message="Backend request timed out", code="timeout"))
        except httpx.RequestError as e:
            logger.error(f"Backend request error during {operation}: {e}", exc_info=True)
            return ServiceResult(error=BackendError(message=f"Backend request failed: {e}", code="request_error"))
        except Exception as e:
            logger.error(f"Unexpected error during {operation}: {e}", exc_info=True)
            return ServiceResult(error=BackendError(message=str(e) or "Unexpected error", code="unexpected"))

        if response.status_code >= 400:
            error = _error_from_response(response)
            logger.error(
                f"Error during {operation}: status={response.status_code} "
                f"code={error.code} message={error.message}"
            )
            return ServiceResult(error=error)

        if method == "HEAD" or not response.content:
            return ServiceResult(data=None)
        try:
            return ServiceResult(data=response.json())
        except ValueError as e:
            logger.error(f"Malformed backend response during {operation}: {e}")
            return ServiceResult(error=BackendError(message="Malformed backend response", code="bad_response"))

    # Auth

    async def verify_token(self, access_token: str) -> ServiceResult:
        """Resolve the user that owns ``access_token``."""
        if not access_token:
            return ServiceResult(error=BackendError(message="Access token is required", code="missing_token"))
        result = await self._send(
            "verify token", "GET", AUTH_USER_PATH, access_token=access_token
        )
        if result.ok and not (isinstance(result.data, dict) and result.data.get("id")):
            return ServiceResult(error=BackendError(message="User not found for token", code="user_not_found"))
        return result

    # Products

    async def list_products(
        self,
        search: str | None = None,
        access_token: str | None = None,
    ) -> ServiceResult:
        """Newest-first listing, optionally filtered on title OR author."""
        params = {
            "select": "*",
            "order": "created_at.desc",
            "limit": str(LIST_LIMIT),
        }
        if search:
            term = sanitize_search_term(search)
            if term:
                params["or"] = f"(title.ilike.*{term}*,author.ilike.*{term}*)"
            else:
                logger.info("Search term rejected by sanitizer; listing without filter")

        result = await self._send(
            "list products", "GET", PRODUCTS_PATH, access_token=access_token, params=params
        )
        if result.ok and result.data is None:
            result.data = []
        return result

    async def get_product(self, product_id: int, access_token: str | None = None) -> ServiceResult:
        """Fetch one product; ``data`` is None when no row matches."""
        result = await self._send(
            "fetch product",
            "GET",
            PRODUCTS_PATH,
            access_token=access_token,
            params={"select": "*", "id": f"eq.{product_id}", "limit": "1"},
        )
        if result.ok:
            rows = result.data or []
            result.data = rows[0] if rows else None
        return result

    async def create_product(self, data: dict[str, Any], access_token: str) -> ServiceResult:
        result = await self._send(
            "create product",
            "POST",
            PRODUCTS_PATH,
            access_token=access_token,
            json=[data],
            headers={"Prefer": "return=representation"},
        )
        if result.ok:
            rows = result.data or []
            result.data = rows[0] if rows else None
        return result

    async def update_product(
        self,
        product_id: int,
        data: dict[str, Any],
        access_token: str,
    ) -> ServiceResult:
        result = await self._send(
            "update product",
            "PATCH",
            PRODUCTS_PATH,
            access_token=access_token,
            params={"id": f"eq.{product_id}"},
            json=data,
            headers={"Prefer": "return=representation"},
        )
        if result.ok:
            rows = result.data or []
            result.data = rows[0] if rows else None
        return result

    async def delete_product(self, product_id: int, access_token: str) -> ServiceResult:
        return await self._send(
            "delete product",
            "DELETE",
            PRODUCTS_PATH,
            access_token=access_token,
            params={"id": f"eq.{product_id}"},
        )

    async def health_check(self) -> bool:
        """Exact-count probe against the products table."""
        result = await self._send(
            "health check",
            "HEAD",
            PRODUCTS_PATH,
            params={"select": "count"},
            headers={"Prefer": "count=exact"},
        )
        return result.ok

    async def aclose(self) -> None:
        await self._public_client.aclose()

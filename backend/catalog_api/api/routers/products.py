"""CRUD + search endpoints for the product catalog."""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from catalog_api.api.dependencies.auth import AuthContext, optional_auth, require_admin
from catalog_api.api.dependencies.backend import get_supabase
from catalog_api.api.schemas.product import (
    MessageResponse,
    ProductCreate,
    ProductListResponse,
    ProductRead,
    ProductResponse,
    ProductUpdate,
)
from catalog_api.security.frontend_token import enforce_frontend_token
from catalog_api.services.supabase_service import SupabaseService
from catalog_api.utils.validation import (
    INTEGER_FIELDS,
    NUMBER_FIELDS,
    sanitize_product_data,
)

logger = logging.getLogger(__name__)

router = APIRouter()

DEFAULT_AVAILABLE_QUANTITY = 1


def _bad_request(error: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"error": error, "message": message},
    )


def _server_error(error: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"error": error, "message": message},
    )


def _not_found(product_id: int) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={
            "error": "Product not found",
            "message": f"Product with ID {product_id} does not exist",
        },
    )


def parse_product_id(raw: str) -> int:
    """Product ids are positive integers; anything else is a 400."""
    try:
        product_id = int(raw.strip())
    except (TypeError, ValueError):
        product_id = 0
    if product_id <= 0:
        raise _bad_request("Invalid product ID", "Product ID must be a positive number")
    return product_id


def _reject_invalid_numbers(body: dict[str, Any], sanitized: dict[str, Any]) -> None:
    """Supplied numeric fields that sanitize to None are client errors."""
    for key in NUMBER_FIELDS + INTEGER_FIELDS:
        if body.get(key) is not None and sanitized.get(key) is None:
            raise _bad_request(f"Invalid {key}", f"Field '{key}' is not a valid value")


async def _fetch_existing(
    supabase: SupabaseService,
    product_id: int,
    access_token: Optional[str],
) -> dict[str, Any]:
    existing = await supabase.get_product(product_id, access_token)
    if not existing.ok:
        raise _server_error(
            "Failed to fetch product",
            "An unexpected error occurred while fetching the product",
        )
    if existing.data is None:
        raise _not_found(product_id)
    return existing.data


@router.get(
    "",
    summary="List or search products",
    response_model=ProductListResponse,
)
async def list_products(
    search: str | None = Query(None, description="Case-insensitive match on title or author"),
    auth: Optional[AuthContext] = Depends(optional_auth),
    supabase: SupabaseService = Depends(get_supabase),
) -> ProductListResponse:
    """Return up to 100 products, newest first."""
    result = await supabase.list_products(search, auth.access_token if auth else None)
    if not result.ok:
        raise _server_error(
            "Failed to fetch products",
            "An unexpected error occurred while fetching products",
        )

    rows = result.data or []
    message = "No products found" if not rows else f"Found {len(rows)} products"
    return ProductListResponse(
        data=[ProductRead.model_validate(row) for row in rows],
        message=message,
    )


@router.get(
    "/{product_id}",
    summary="Get a product by id",
    response_model=ProductResponse,
)
async def get_product(
    product_id: str,
    auth: Optional[AuthContext] = Depends(optional_auth),
    supabase: SupabaseService = Depends(get_supabase),
) -> ProductResponse:
    pid = parse_product_id(product_id)
    row = await _fetch_existing(supabase, pid, auth.access_token if auth else None)
    return ProductResponse(
        data=ProductRead.model_validate(row),
        message="Product retrieved successfully",
    )


@router.post(
    "",
    summary="Create a product",
    status_code=status.HTTP_201_CREATED,
    response_model=ProductResponse,
    dependencies=[Depends(enforce_frontend_token)],
)
async def create_product(
    payload: ProductCreate,
    auth: AuthContext = Depends(require_admin),
    supabase: SupabaseService = Depends(get_supabase),
) -> ProductResponse:
    """Insert a product. Title, author and a positive price are required.

    String fields are stripped of markup, the description is HTML-sanitized
    and amounts are rounded to two decimals before the insert.
    """
    if not payload.title or not payload.author or payload.price is None:
        raise _bad_request("Missing required fields", "Title, author, and price are required")
    if payload.price <= 0:
        raise _bad_request("Invalid price", "Price must be greater than 0")

    body = payload.model_dump(by_alias=True, exclude_unset=True)
    data = sanitize_product_data(body, partial=True)
    _reject_invalid_numbers(body, data)

    if not data.get("title") or not data.get("author"):
        raise _bad_request("Missing required fields", "Title, author, and price are required")
    if data["price"] <= 0:
        raise _bad_request("Invalid price", "Price must be greater than 0")

    if data.get("base_price") is None:
        data["base_price"] = data["price"]
    if data.get("available_quantity") is None:
        data["available_quantity"] = DEFAULT_AVAILABLE_QUANTITY

    result = await supabase.create_product(data, auth.access_token)
    if not result.ok:
        raise _server_error(
            "Failed to create product",
            "An unexpected error occurred while creating the product",
        )

    created = result.data or None
    logger.info(f"Created product {created.get('id') if created else '?'} by user {auth.user.get('id')}")
    return ProductResponse(
        data=ProductRead.model_validate(created) if created else None,
        message="Product created successfully",
    )


@router.put(
    "/{product_id}",
    summary="Update an existing product",
    response_model=ProductResponse,
    dependencies=[Depends(enforce_frontend_token)],
)
async def update_product(
    product_id: str,
    payload: ProductUpdate,
    auth: AuthContext = Depends(require_admin),
    supabase: SupabaseService = Depends(get_supabase),
) -> ProductResponse:
    """Partial update: only fields present in the body are written."""
    pid = parse_product_id(product_id)
    body = payload.model_dump(by_alias=True, exclude_unset=True)

    if "price" in body and (body["price"] is None or body["price"] <= 0):
        raise _bad_request("Invalid price", "Price must be greater than 0")
    if not body:
        raise _bad_request("No fields to update", "Request body contains no product fields")

    await _fetch_existing(supabase, pid, auth.access_token)

    data = sanitize_product_data(body, partial=True)
    _reject_invalid_numbers(body, data)
    for key in ("title", "author"):
        if key in data and not data[key]:
            raise _bad_request("Invalid field", f"Field '{key}' cannot be empty")
    if "price" in data and data["price"] <= 0:
        raise _bad_request("Invalid price", "Price must be greater than 0")

    result = await supabase.update_product(pid, data, auth.access_token)
    if not result.ok:
        raise _server_error(
            "Failed to update product",
            "An unexpected error occurred while updating the product",
        )
    if result.data is None:
        raise _not_found(pid)

    logger.info(f"Updated product {pid} by user {auth.user.get('id')}")
    return ProductResponse(
        data=ProductRead.model_validate(result.data),
        message="Product updated successfully",
    )


@router.delete(
    "/{product_id}",
    summary="Delete a product",
    response_model=MessageResponse,
    dependencies=[Depends(enforce_frontend_token)],
)
async def delete_product(
    product_id: str,
    auth: AuthContext = Depends(require_admin),
    supabase: SupabaseService = Depends(get_supabase),
) -> MessageResponse:
    pid = parse_product_id(product_id)
    await _fetch_existing(supabase, pid, auth.access_token)

    result = await supabase.delete_product(pid, auth.access_token)
    if not result.ok:
        raise _server_error(
            "Failed to delete product",
            "An unexpected error occurred while deleting the product",
        )

    logger.info(f"Deleted product {pid} by user {auth.user.get('id')}")
    return MessageResponse(message="Product deleted successfully")

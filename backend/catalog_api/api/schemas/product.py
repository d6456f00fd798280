"""Pydantic models describing Product payloads.

Wire names follow the hosted table, which uses hyphenated column names for
``product-category`` and ``product-code-or-isbn``.
"""

from pydantic import BaseModel, ConfigDict, Field


class ProductBase(BaseModel):
    category_id: str | None = None
    product_category: str | None = Field(None, alias="product-category")
    title: str | None = None
    subtitle: str | None = None
    author: str | None = None
    description: str | None = None
    product_code_or_isbn: str | None = Field(None, alias="product-code-or-isbn")
    price: float | None = None
    base_price: float | None = None
    currency_id: str | None = None
    available_quantity: int | None = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ProductCreate(ProductBase):
    """Schema for admin-created product rows (title, author, price checked in the handler)."""


class ProductUpdate(ProductBase):
    """Partial update; only fields present in the request body are applied."""


class ProductRead(ProductBase):
    id: int
    created_at: str | None = None
    updated_at: str | None = None

    model_config = ConfigDict(
        populate_by_name=True, extra="allow", coerce_numbers_to_str=True
    )


class ProductResponse(BaseModel):
    data: ProductRead | None
    message: str


class ProductListResponse(BaseModel):
    data: list[ProductRead]
    message: str


class MessageResponse(BaseModel):
    message: str

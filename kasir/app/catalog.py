import asyncio
import mimetypes
import os
import time
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from .errors import BackendError, FetchError, ValidationError
from .logs import json_log
from .query import Backend, Embed, Query
from .storage.s3 import ObjectStorage

PRODUCT_COLUMNS = (
    "id",
    "name",
    "price",
    "stock",
    "is_active",
    "image",
    "category_id",
    "created_at",
    Embed("categories", ("name",), many=False),
)


class ProductIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    price: Decimal = Field(ge=0)
    stock: int = Field(default=0, ge=0)
    category_id: Optional[str] = None
    image: Optional[str] = None
    is_active: bool = True


class ProductPatch(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    price: Optional[Decimal] = Field(default=None, ge=0)
    stock: Optional[int] = Field(default=None, ge=0)
    category_id: Optional[str] = None
    image: Optional[str] = None
    is_active: Optional[bool] = None


def _with_category_name(row: dict) -> dict:
    cat = row.get("categories") or {}
    return {**row, "category_name": cat.get("name") or "Unknown"}


async def fetch_products(backend: Backend, active_only: bool = False) -> list[dict]:
    query = Query("products").select(*PRODUCT_COLUMNS).order("created_at", ascending=False)
    if active_only:
        query.eq("is_active", True)
    try:
        res = await backend.fetch(query)
    except BackendError as ex:
        json_log("error", "catalog.products_failed", error=str(ex))
        raise FetchError(str(ex)) from ex
    return [_with_category_name(r) for r in res.rows]


async def fetch_categories(backend: Backend) -> list[dict]:
    try:
        res = await backend.fetch(Query("categories").select("*").order("name"))
    except BackendError as ex:
        json_log("error", "catalog.categories_failed", error=str(ex))
        raise FetchError(str(ex)) from ex
    return res.rows


def _product_values(data: BaseModel) -> dict:
    return data.model_dump(exclude_none=True)


async def create_product(backend: Backend, data: ProductIn) -> dict:
    try:
        created = await backend.insert("products", [_product_values(data)])
    except BackendError as ex:
        json_log("error", "catalog.create_failed", error=str(ex))
        raise FetchError(str(ex)) from ex
    return created[0] if created else {}


async def update_product(backend: Backend, product_id: str, data: ProductPatch) -> dict:
    values = _product_values(data)
    if not values:
        raise ValidationError("nothing to update")
    try:
        updated = await backend.update("products", values, id=product_id)
    except BackendError as ex:
        json_log("error", "catalog.update_failed", product_id=product_id, error=str(ex))
        raise FetchError(str(ex)) from ex
    if not updated:
        raise ValidationError("product not found")
    return updated[0]


async def delete_product(backend: Backend, product_id: str) -> dict:
    # Soft delete: sold products stay referenced by transaction_items.
    return await update_product(backend, product_id, ProductPatch(is_active=False))


def image_key(filename: str, now_ms: Optional[int] = None) -> str:
    ext = os.path.splitext(filename or "")[1].lstrip(".").lower() or "jpg"
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"images/{stamp}.{ext}"


async def upload_product_image(
    storage: ObjectStorage, data: bytes, filename: str, content_type: Optional[str] = None
) -> Optional[str]:
    """Upload to the product bucket; returns the public URL or None when the upload fails."""
    if not data:
        return None
    key = image_key(filename)
    ctype = content_type or mimetypes.guess_type(filename or "")[0] or "application/octet-stream"
    try:
        return await asyncio.to_thread(storage.upload, key, data, ctype)
    except Exception as ex:
        json_log("error", "catalog.image_upload_failed", key=key, error=str(ex))
        return None

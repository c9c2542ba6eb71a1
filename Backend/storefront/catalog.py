"""
Catalog: categories and products of one store.

Owner routes (bearer token):
    GET    /catalog/categories
    POST   /catalog/categories
    PUT    /catalog/categories/{category_id}
    DELETE /catalog/categories/{category_id}
    POST   /catalog/categories/{category_id}/image
    GET    /catalog/products
    POST   /catalog/products
    PUT    /catalog/products/order
    PUT    /catalog/products/{product_id}
    DELETE /catalog/products/{product_id}
    POST   /catalog/products/{product_id}/image

The public storefront reads through list_categories / list_products /
filter_products (see public.py).
"""

import logging
import time
from collections.abc import Mapping
from decimal import Decimal
from typing import Any, Optional, Sequence

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import get_current_user_id
from .core.db import get_session
from .models import Category, Product
from .storage import (
    CATEGORY_IMAGES_FOLDER,
    PRODUCT_IMAGES_FOLDER,
    ObjectStorage,
    get_storage,
    store_image,
)
from .tenancy import (
    find_category_by_name,
    get_products_by_ids,
    require_owned,
)
from .tenancy import list_categories as query_categories
from .tenancy import list_products as query_products

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/catalog", tags=["catalog"])


# ────────────────────────────────────────────────────────────────
# Cache busting and filtering
# ────────────────────────────────────────────────────────────────

def with_cache_buster(url: Optional[str], timestamp: Optional[int] = None) -> Optional[str]:
    """
    Replace any query string on an image URL with ?t=<timestamp>.

        with_cache_buster("https://cdn/x.jpg?t=1", 5) -> "https://cdn/x.jpg?t=5"
    """
    if not url:
        return url
    if timestamp is None:
        timestamp = int(time.time() * 1000)
    base = url.split("?", 1)[0]
    return f"{base}?t={timestamp}"


def _field(item: Any, name: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(name)
    return getattr(item, name, None)


def filter_products(products: Sequence[Any], query: str = "", category: Optional[str] = None) -> list:
    """
    Filter products by free text and category.

    Name matches the query as a case-insensitive substring; category must
    match exactly when given. Both conditions apply together. A blank query
    with no category returns every product in the original order.
    Items may be dicts or objects with name/category attributes.
    """
    needle = (query or "").strip().lower()
    result = []
    for product in products:
        if category and _field(product, "category") != category:
            continue
        if needle and needle not in (_field(product, "name") or "").lower():
            continue
        result.append(product)
    return result


# ────────────────────────────────────────────────────────────────
# Schemas
# ────────────────────────────────────────────────────────────────

class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    image_url: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Category name is required")
        return v


class CategoryOut(BaseModel):
    id: str
    name: str
    image_url: Optional[str] = None


def _clean_product_name(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("Product name is required")
    return v


class ProductIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    category_id: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    is_new: bool = False
    is_popular: bool = False
    display_order: Optional[int] = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        return _clean_product_name(v)


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    price: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    category_id: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    is_new: Optional[bool] = None
    is_popular: Optional[bool] = None
    display_order: Optional[int] = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return _clean_product_name(v)


class ProductOut(BaseModel):
    id: str
    name: str
    price: float
    category_id: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    is_new: bool = False
    is_popular: bool = False
    display_order: Optional[int] = None


class ProductOrderIn(BaseModel):
    product_ids: list[str] = Field(..., min_length=1)


def category_out(category: Category, timestamp: Optional[int] = None) -> CategoryOut:
    return CategoryOut(
        id=category.id,
        name=category.name,
        image_url=with_cache_buster(category.image_url, timestamp),
    )


def product_out(product: Product, timestamp: Optional[int] = None) -> ProductOut:
    return ProductOut(
        id=product.id,
        name=product.name,
        price=float(product.price),
        category_id=product.category_id,
        category=product.category,
        description=product.description,
        image_url=with_cache_buster(product.image_url, timestamp),
        is_new=product.is_new,
        is_popular=product.is_popular,
        display_order=product.display_order,
    )


# ────────────────────────────────────────────────────────────────
# Service functions
# ────────────────────────────────────────────────────────────────

async def list_categories(
    session: AsyncSession,
    user_id: str,
    timestamp: Optional[int] = None,
) -> list[CategoryOut]:
    """An owner's categories with cache-busted image URLs."""
    if timestamp is None:
        timestamp = int(time.time() * 1000)
    categories = await query_categories(session, user_id)
    return [category_out(c, timestamp) for c in categories]


async def list_products(
    session: AsyncSession,
    user_id: str,
    timestamp: Optional[int] = None,
) -> list[ProductOut]:
    """An owner's products by display order, nulls last, with cache-busted image URLs."""
    if timestamp is None:
        timestamp = int(time.time() * 1000)
    products = await query_products(session, user_id)
    return [product_out(p, timestamp) for p in products]


async def _get_owned_category(session: AsyncSession, user_id: str, category_id: str) -> Category:
    category = await require_owned(session, Category, category_id, user_id)
    if not category:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Category not found")
    return category


async def _get_owned_product(session: AsyncSession, user_id: str, product_id: str) -> Product:
    product = await require_owned(session, Product, product_id, user_id)
    if not product:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    return product


async def _ensure_category_name_free(
    session: AsyncSession,
    user_id: str,
    name: str,
    exclude_id: Optional[str] = None,
) -> None:
    # Checked before write only; two concurrent creates can both pass
    existing = await find_category_by_name(session, user_id, name)
    if existing and existing.id != exclude_id:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"A category named '{name}' already exists",
        )


async def create_category(session: AsyncSession, user_id: str, data: CategoryIn) -> Category:
    await _ensure_category_name_free(session, user_id, data.name)
    category = Category(user_id=user_id, name=data.name, image_url=data.image_url)
    session.add(category)
    await session.commit()
    await session.refresh(category)
    logger.info(f"Created category {category.id} for user {user_id}")
    return category


async def update_category(
    session: AsyncSession,
    user_id: str,
    category_id: str,
    data: CategoryIn,
) -> Category:
    category = await _get_owned_category(session, user_id, category_id)
    await _ensure_category_name_free(session, user_id, data.name, exclude_id=category.id)

    old_name = category.name
    category.name = data.name
    category.image_url = data.image_url
    if old_name != data.name:
        # Storefront filters on the denormalized name
        await session.execute(
            update(Product)
            .where(Product.user_id == user_id, Product.category_id == category.id)
            .values(category=data.name)
        )
    await session.commit()
    await session.refresh(category)
    return category


async def delete_category(session: AsyncSession, user_id: str, category_id: str) -> None:
    category = await _get_owned_category(session, user_id, category_id)
    await session.execute(
        update(Product)
        .where(Product.user_id == user_id, Product.category_id == category.id)
        .values(category_id=None, category=None)
    )
    await session.delete(category)
    await session.commit()
    logger.info(f"Deleted category {category_id} for user {user_id}")


async def create_product(session: AsyncSession, user_id: str, data: ProductIn) -> Product:
    category_name = None
    if data.category_id:
        category_name = (await _get_owned_category(session, user_id, data.category_id)).name

    product = Product(
        user_id=user_id,
        name=data.name,
        price=data.price,
        category_id=data.category_id,
        category=category_name,
        description=data.description,
        image_url=data.image_url,
        is_new=data.is_new,
        is_popular=data.is_popular,
        display_order=data.display_order,
    )
    session.add(product)
    await session.commit()
    await session.refresh(product)
    logger.info(f"Created product {product.id} for user {user_id}")
    return product


async def update_product(
    session: AsyncSession,
    user_id: str,
    product_id: str,
    data: ProductUpdate,
) -> Product:
    product = await _get_owned_product(session, user_id, product_id)
    changes = data.model_dump(exclude_unset=True)

    if "category_id" in changes:
        if changes["category_id"]:
            category = await _get_owned_category(session, user_id, changes["category_id"])
            product.category = category.name
        else:
            product.category = None

    for field, value in changes.items():
        if field in ("name", "price") and value is None:
            continue
        setattr(product, field, value)

    await session.commit()
    await session.refresh(product)
    return product


async def delete_product(session: AsyncSession, user_id: str, product_id: str) -> None:
    product = await _get_owned_product(session, user_id, product_id)
    await session.delete(product)
    await session.commit()
    logger.info(f"Deleted product {product_id} for user {user_id}")


async def reorder_products(session: AsyncSession, user_id: str, product_ids: list[str]) -> None:
    """Set display_order to each product's position in product_ids."""
    products = await get_products_by_ids(session, user_id, product_ids)
    by_id = {p.id: p for p in products}
    missing = [pid for pid in product_ids if pid not in by_id]
    if missing:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Products not found: {', '.join(missing)}",
        )
    for position, pid in enumerate(product_ids):
        by_id[pid].display_order = position
    await session.commit()


# ────────────────────────────────────────────────────────────────
# Owner routes
# ────────────────────────────────────────────────────────────────

@router.get("/categories", response_model=list[CategoryOut])
async def get_categories(
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    return await list_categories(session, user_id)


@router.post("/categories", response_model=CategoryOut, status_code=status.HTTP_201_CREATED)
async def post_category(
    payload: CategoryIn,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    return category_out(await create_category(session, user_id, payload))


@router.put("/categories/{category_id}", response_model=CategoryOut)
async def put_category(
    category_id: str,
    payload: CategoryIn,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    return category_out(await update_category(session, user_id, category_id, payload))


@router.delete("/categories/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_category(
    category_id: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    await delete_category(session, user_id, category_id)


@router.post("/categories/{category_id}/image", response_model=CategoryOut)
async def upload_category_image(
    category_id: str,
    file: UploadFile = File(...),
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_storage),
):
    category = await _get_owned_category(session, user_id, category_id)
    data = await file.read()
    category.image_url = await store_image(storage, user_id, CATEGORY_IMAGES_FOLDER, "category", data)
    await session.commit()
    await session.refresh(category)
    return category_out(category)


@router.get("/products", response_model=list[ProductOut])
async def get_products(
    q: str = "",
    category: Optional[str] = None,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    products = await list_products(session, user_id)
    return filter_products(products, q, category)


@router.post("/products", response_model=ProductOut, status_code=status.HTTP_201_CREATED)
async def post_product(
    payload: ProductIn,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    return product_out(await create_product(session, user_id, payload))


@router.put("/products/order", status_code=status.HTTP_204_NO_CONTENT)
async def put_product_order(
    payload: ProductOrderIn,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    await reorder_products(session, user_id, payload.product_ids)


@router.put("/products/{product_id}", response_model=ProductOut)
async def put_product(
    product_id: str,
    payload: ProductUpdate,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    return product_out(await update_product(session, user_id, product_id, payload))


@router.delete("/products/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_product(
    product_id: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    await delete_product(session, user_id, product_id)


@router.post("/products/{product_id}/image", response_model=ProductOut)
async def upload_product_image(
    product_id: str,
    file: UploadFile = File(...),
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_storage),
):
    product = await _get_owned_product(session, user_id, product_id)
    data = await file.read()
    product.image_url = await store_image(storage, user_id, PRODUCT_IMAGES_FOLDER, "product", data)
    await session.commit()
    await session.refresh(product)
    return product_out(product)

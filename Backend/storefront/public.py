"""
Public storefront routes (no auth).

Pattern: /s/{slug}/endpoint, or the store subdomain <slug>.<platform_domain>

Usage:
    GET /s/cafe1                          -> Store settings for "cafe1"
    GET /s/cafe1/categories               -> Categories
    GET /s/cafe1/products?q=bur&category= -> Products, filtered
    GET /storefront  (Host: cafe1.qrmenuc.com) -> Everything above in one payload

Visitor feedback lives under the same prefix (see feedback.py).
"""

import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from .catalog import CategoryOut, ProductOut, filter_products, list_categories, list_products
from .core.db import get_session
from .store_settings import StoreSettingsOut, get_settings_by_slug, settings_out
from .tenancy import StoreContext, get_store_context, resolve_store_from_slug

logger = logging.getLogger(__name__)


# ────────────────────────────────────────────────────────────────
# Router Definition
# ────────────────────────────────────────────────────────────────

router = APIRouter(prefix="/s/{slug}", tags=["storefront"])
host_router = APIRouter(tags=["storefront"])


async def get_store_context_from_slug(
    slug: str = Path(..., description="Store URL slug (e.g., 'cafe1')"),
    session: AsyncSession = Depends(get_session),
) -> StoreContext:
    """
    Resolve store context strictly from URL slug.

    Raises 404 if no store uses the slug.
    """
    ctx = await resolve_store_from_slug(session, slug)
    if not ctx:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Store not found: {slug}. Check the URL and try again.",
        )
    return ctx


class StorefrontOut(BaseModel):
    store: StoreSettingsOut
    categories: list[CategoryOut]
    products: list[ProductOut]


async def _store_settings(session: AsyncSession, ctx: StoreContext) -> StoreSettingsOut:
    row = await get_settings_by_slug(session, ctx.slug)
    return settings_out(row, ctx.owner_id)


# ────────────────────────────────────────────────────────────────
# Slug routes
# ────────────────────────────────────────────────────────────────

@router.get("", response_model=StoreSettingsOut)
async def public_store(
    ctx: StoreContext = Depends(get_store_context_from_slug),
    session: AsyncSession = Depends(get_session),
):
    return await _store_settings(session, ctx)


@router.get("/categories", response_model=list[CategoryOut])
async def public_categories(
    ctx: StoreContext = Depends(get_store_context_from_slug),
    session: AsyncSession = Depends(get_session),
):
    return await list_categories(session, ctx.owner_id)


@router.get("/products", response_model=list[ProductOut])
async def public_products(
    q: str = "",
    category: Optional[str] = None,
    ctx: StoreContext = Depends(get_store_context_from_slug),
    session: AsyncSession = Depends(get_session),
):
    products = await list_products(session, ctx.owner_id)
    return filter_products(products, q, category)


# ────────────────────────────────────────────────────────────────
# Subdomain route
# ────────────────────────────────────────────────────────────────

@host_router.get("/storefront", response_model=StorefrontOut)
async def storefront_by_host(
    q: str = "",
    category: Optional[str] = None,
    ctx: StoreContext = Depends(get_store_context),
    session: AsyncSession = Depends(get_session),
):
    # One timestamp for every image in the payload
    timestamp = int(time.time() * 1000)
    products = await list_products(session, ctx.owner_id, timestamp)
    logger.debug(f"Storefront for {ctx.slug} via {ctx.source.value}")
    return StorefrontOut(
        store=await _store_settings(session, ctx),
        categories=await list_categories(session, ctx.owner_id, timestamp),
        products=filter_products(products, q, category),
    )

"""
Multi-tenancy context module.

This module provides the StoreContext abstraction for tenant isolation on
the public storefront. A tenant is one store owner; every public read is
scoped by the owner's user id resolved here.

Resolution sources:
    - URL path slug: /s/<slug>/...
    - Host header subdomain: <slug>.<platform_domain>
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from fastapi import Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.db import get_session
from ..models import StoreSettings


logger = logging.getLogger(__name__)


class StoreResolutionSource(str, Enum):
    """How the store context was determined."""

    URL_SLUG = "url_slug"           # From /s/[slug]/ in URL path
    SUBDOMAIN = "subdomain"         # From <slug>.<platform_domain> Host header


@dataclass(frozen=True)
class StoreContext:
    """
    Immutable context representing the store behind a public request.

    Attributes:
        owner_id: The store owner's user id (store_settings.user_id)
        slug: URL-safe identifier (e.g., "cafe1")
        store_name: Display name, may be None until the owner sets one
        source: How this context was determined
    """

    owner_id: str
    slug: str
    store_name: Optional[str] = None
    source: StoreResolutionSource = StoreResolutionSource.URL_SLUG

    def __post_init__(self):
        if not self.owner_id:
            raise ValueError("owner_id must not be empty")


# ────────────────────────────────────────────────────────────────
# Resolution Functions
# ────────────────────────────────────────────────────────────────

async def resolve_store_from_slug(
    session: AsyncSession,
    slug: str,
    source: StoreResolutionSource = StoreResolutionSource.URL_SLUG,
) -> Optional[StoreContext]:
    """
    Resolve store context from a slug.

    Returns:
        StoreContext if found, None if no store uses the slug
    """
    result = await session.execute(
        select(StoreSettings).where(StoreSettings.slug == slug.lower())
    )
    row = result.scalar_one_or_none()

    if not row:
        return None

    return StoreContext(
        owner_id=row.user_id,
        slug=row.slug,
        store_name=row.store_name,
        source=source,
    )


# ────────────────────────────────────────────────────────────────
# URL Helpers
# ────────────────────────────────────────────────────────────────

def extract_slug_from_path(path: str) -> Optional[str]:
    """
    Extract store slug from URL path.

    Expected patterns:
        /s/<slug>/...      -> returns <slug>
    """
    match = re.match(r"^/s/([a-z0-9-]+)(?:/|$)", path)
    if match:
        return match.group(1)
    return None


def extract_slug_from_host(host: str, platform_domain: str) -> Optional[str]:
    """
    Extract store slug from a Host header.

        cafe1.qrmenuc.com       -> "cafe1"
        cafe1.qrmenuc.com:443   -> "cafe1"
        qrmenuc.com             -> None
        www.qrmenuc.com         -> None
    """
    if not host or not platform_domain:
        return None

    hostname = host.split(":", 1)[0].strip().lower().rstrip(".")
    suffix = "." + platform_domain.lower()
    if not hostname.endswith(suffix):
        return None

    label = hostname[: -len(suffix)]
    # Only a single label in front of the platform domain maps to a store
    if not label or "." in label or label == "www":
        return None
    if not re.fullmatch(r"[a-z0-9-]+", label):
        return None
    return label


# ────────────────────────────────────────────────────────────────
# FastAPI Dependencies
# ────────────────────────────────────────────────────────────────

async def get_store_context(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> StoreContext:
    """
    FastAPI dependency to resolve store context from request.

    Resolution order (first match wins):
    1. URL path slug (/s/{slug}/)
    2. Host header subdomain (<slug>.<platform_domain>)

    Usage:
        @router.get("/categories")
        async def categories(ctx: StoreContext = Depends(get_store_context)):
            ...
    """
    slug = request.path_params.get("slug") or extract_slug_from_path(request.url.path)
    if slug:
        ctx = await resolve_store_from_slug(session, slug)
        if ctx:
            logger.debug(f"Resolved store from slug: {slug} -> owner={ctx.owner_id}")
            return ctx
        raise HTTPException(status_code=404, detail=f"Store not found: {slug}")

    settings = get_settings()
    host_slug = extract_slug_from_host(request.headers.get("host", ""), settings.platform_domain)
    if host_slug:
        ctx = await resolve_store_from_slug(session, host_slug, StoreResolutionSource.SUBDOMAIN)
        if ctx:
            logger.debug(f"Resolved store from host: {host_slug} -> owner={ctx.owner_id}")
            return ctx
        raise HTTPException(status_code=404, detail=f"Store not found: {host_slug}")

    raise HTTPException(
        status_code=400,
        detail="Store context required. Use /s/{slug}/ or a store subdomain.",
    )


__all__ = [
    "StoreContext",
    "StoreResolutionSource",
    "get_store_context",
    "resolve_store_from_slug",
    "extract_slug_from_path",
    "extract_slug_from_host",
]

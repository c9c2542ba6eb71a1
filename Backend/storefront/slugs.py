"""
Store slug helpers.

A slug maps a store to its public subdomain (<slug>.<platform_domain>) and
to the /s/<slug> path. Slugs are lowercase ASCII letters, digits and
hyphens, unique across all stores.

Examples:
    normalize_slug("My Cafe")     -> "my-cafe"
    normalize_slug("Bella's  Bar") -> "bellas-bar"
    normalize_slug("my-cafe")     -> "my-cafe"
"""

import logging
import re
from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import StoreSettings

logger = logging.getLogger(__name__)

SLUG_PATTERN = re.compile(r"^[a-z0-9-]+$")
SLUG_MAX_LENGTH = 100


class SlugError(ValueError):
    """Raised when a slug is empty or contains characters outside [a-z0-9-]."""


def normalize_slug(raw: str) -> str:
    """
    Lower-case, turn whitespace runs into hyphens, drop everything else
    outside [a-z0-9-]. Applying it twice gives the same result.
    """
    slug = (raw or "").strip().lower()
    slug = re.sub(r"\s+", "-", slug)
    return re.sub(r"[^a-z0-9-]", "", slug)


def validate_slug(slug: str) -> str:
    if not slug:
        raise SlugError("Slug is required")
    if len(slug) > SLUG_MAX_LENGTH:
        raise SlugError(f"Slug must be at most {SLUG_MAX_LENGTH} characters")
    if not SLUG_PATTERN.match(slug):
        raise SlugError("Slug may only contain lowercase letters, numbers and hyphens")
    return slug


async def find_slug_owner(session: AsyncSession, slug: str) -> Optional[str]:
    """Return the user id currently holding a slug, if any."""
    result = await session.execute(
        select(StoreSettings.user_id).where(StoreSettings.slug == slug)
    )
    return result.scalars().first()


async def is_slug_available(session: AsyncSession, slug: str, user_id: str) -> bool:
    """A slug is available when nobody holds it or the caller already does."""
    owner = await find_slug_owner(session, slug)
    return owner is None or owner == user_id


async def ensure_slug_available(session: AsyncSession, slug: str, user_id: str) -> None:
    """
    Raises:
        HTTPException 409: If another store already uses the slug
    """
    if not await is_slug_available(session, slug, user_id):
        logger.info(f"Slug '{slug}' already taken, rejected for user {user_id}")
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"The slug '{slug}' is already in use by another store",
        )

"""
Tenant-scoped query helpers.

These functions provide safe, tenant-isolated database queries.
ALL queries for catalog data MUST use these helpers or include explicit
user_id filtering.

Usage:
    from storefront.tenancy.queries import list_products, scoped_select

    products = await list_products(session, owner_id)

    # Or using composable helpers:
    stmt = scoped_select(Product, owner_id).where(Product.is_new.is_(True))
"""

from typing import Optional, Sequence, Type, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import DeclarativeBase

from ..models import Category, Feedback, Product

# Type variable for generic model functions
T = TypeVar("T", bound=DeclarativeBase)


def _owner_column(model):
    # Feedback is keyed by the store it was left on
    if model is Feedback:
        return Feedback.store_owner_id
    return model.user_id


# ────────────────────────────────────────────────────────────────
# Composable Query Helpers
# ────────────────────────────────────────────────────────────────

def scoped_select(model: Type[T], owner_id: str) -> Select:
    """
    Create a SELECT statement pre-filtered by owner.

    Usage:
        stmt = scoped_select(Product, owner_id).where(Product.is_popular.is_(True))
        result = await session.execute(stmt)
    """
    return select(model).where(tenant_filter(model, owner_id))


def tenant_filter(model: Type[T], owner_id: str):
    """
    Return a SQLAlchemy filter clause for the owning user.

    Usage:
        stmt = select(Product).where(tenant_filter(Product, owner_id), Product.is_new.is_(True))
    """
    return _owner_column(model) == owner_id


async def require_owned(
    session: AsyncSession,
    model: Type[T],
    entity_id: str,
    owner_id: str,
) -> Optional[T]:
    """
    Fetch an entity by ID, validating ownership.
    Returns None if not found or owned by another user.

    Usage:
        product = await require_owned(session, Product, product_id, owner_id)
        if not product:
            raise HTTPException(404, "Product not found")
    """
    result = await session.execute(
        scoped_select(model, owner_id).where(model.id == entity_id)
    )
    return result.scalar_one_or_none()


# ────────────────────────────────────────────────────────────────
# Category Queries
# ────────────────────────────────────────────────────────────────

async def list_categories(session: AsyncSession, owner_id: str) -> Sequence[Category]:
    """List an owner's categories, oldest first."""
    result = await session.execute(
        scoped_select(Category, owner_id).order_by(Category.created_at, Category.name)
    )
    return result.scalars().all()


async def find_category_by_name(
    session: AsyncSession,
    owner_id: str,
    name: str,
) -> Optional[Category]:
    """Find a category by name (case-insensitive), scoped to owner."""
    result = await session.execute(
        scoped_select(Category, owner_id).where(func.lower(Category.name) == name.strip().lower())
    )
    return result.scalars().first()


# ────────────────────────────────────────────────────────────────
# Product Queries
# ────────────────────────────────────────────────────────────────

async def list_products(session: AsyncSession, owner_id: str) -> Sequence[Product]:
    """List an owner's products by display_order (nulls last), then creation time."""
    result = await session.execute(
        scoped_select(Product, owner_id).order_by(
            Product.display_order.asc().nulls_last(),
            Product.created_at,
        )
    )
    return result.scalars().all()


async def get_products_by_ids(
    session: AsyncSession,
    owner_id: str,
    product_ids: Sequence[str],
) -> Sequence[Product]:
    """Get multiple products by IDs, scoped to owner."""
    if not product_ids:
        return []
    result = await session.execute(
        scoped_select(Product, owner_id).where(Product.id.in_(product_ids))
    )
    return result.scalars().all()


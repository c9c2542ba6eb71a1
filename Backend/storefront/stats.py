"""
Page views and platform-wide statistics.

    increment_page_view   one counter row per store owner, +1 per visit
    update_system_stats   recompute totals into the single system_stats row
    get_system_stats      read that row (created empty on first use)
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .core.responses import ErrorCodes, FunctionError
from .models import PageView, StoreSettings, SystemStats, User

logger = logging.getLogger(__name__)


def stats_to_dict(stats: SystemStats) -> dict:
    return {
        "total_users": stats.total_users,
        "total_active_stores": stats.total_active_stores,
        "total_page_views": stats.total_page_views,
        "last_updated": stats.last_updated.isoformat() if stats.last_updated else None,
    }


async def increment_page_view(
    session: AsyncSession,
    user_id: str,
    now: Optional[datetime] = None,
) -> int:
    """Count one storefront visit. Returns the new total for that store."""
    now = now or datetime.now(timezone.utc)

    owner = await session.get(User, user_id)
    if owner is None:
        raise FunctionError("Store not found", ErrorCodes.NOT_FOUND, 404)

    result = await session.execute(select(PageView).where(PageView.user_id == user_id))
    row = result.scalar_one_or_none()
    if row is None:
        row = PageView(user_id=user_id, view_count=1, last_viewed_at=now)
        session.add(row)
    else:
        row.view_count += 1
        row.last_viewed_at = now
    await session.commit()
    return row.view_count


async def _get_or_create_stats(session: AsyncSession) -> SystemStats:
    result = await session.execute(select(SystemStats).order_by(SystemStats.id).limit(1))
    stats = result.scalar_one_or_none()
    if stats is None:
        stats = SystemStats()
        session.add(stats)
        await session.flush()
        logger.info("📊 Created system_stats row")
    return stats


async def update_system_stats(session: AsyncSession, now: Optional[datetime] = None) -> SystemStats:
    now = now or datetime.now(timezone.utc)
    stats = await _get_or_create_stats(session)

    stats.total_users = (await session.execute(select(func.count(User.id)))).scalar_one()
    stats.total_active_stores = (
        await session.execute(
            select(func.count(StoreSettings.user_id)).where(StoreSettings.slug.is_not(None))
        )
    ).scalar_one()
    stats.total_page_views = (
        await session.execute(select(func.coalesce(func.sum(PageView.view_count), 0)))
    ).scalar_one()
    stats.last_updated = now

    await session.commit()
    await session.refresh(stats)
    logger.info(
        f"📊 System stats: {stats.total_users} users, "
        f"{stats.total_active_stores} stores, {stats.total_page_views} views"
    )
    return stats


async def get_system_stats(session: AsyncSession) -> SystemStats:
    stats = await _get_or_create_stats(session)
    await session.commit()
    return stats

"""
Notifications sent by the admin panel.

Fan-out happens in the manage-user remote function (action "message"),
which calls notify_all / notify_user. Recipients read them here:

    GET  /notifications                 -> newest first
    POST /notifications/{id}/read
    POST /notifications/read-all
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import get_current_user_id
from .core.db import get_session
from .models import Notification, User

logger = logging.getLogger(__name__)

ADMIN_MESSAGE = "admin_message"

router = APIRouter(prefix="/notifications", tags=["notifications"])


class NotificationOut(BaseModel):
    id: str
    message: str
    type: str
    is_read: bool
    created_at: Optional[datetime] = None


def notification_out(item: Notification) -> NotificationOut:
    return NotificationOut(
        id=item.id,
        message=item.message,
        type=item.type,
        is_read=item.is_read,
        created_at=item.created_at,
    )


# ────────────────────────────────────────────────────────────────
# Fan-out
# ────────────────────────────────────────────────────────────────

async def notify_all(session: AsyncSession, message: str) -> int:
    """One row per user. The caller commits."""
    result = await session.execute(select(User.id))
    user_ids = result.scalars().all()
    session.add_all(
        Notification(user_id=uid, message=message, type=ADMIN_MESSAGE) for uid in user_ids
    )
    await session.flush()
    logger.info(f"📣 Broadcast notification to {len(user_ids)} users")
    return len(user_ids)


async def notify_user(session: AsyncSession, user_id: str, message: str) -> Notification:
    """The caller commits."""
    item = Notification(user_id=user_id, message=message, type=ADMIN_MESSAGE)
    session.add(item)
    await session.flush()
    logger.info(f"📨 Notification to user {user_id}")
    return item


# ────────────────────────────────────────────────────────────────
# Inbox routes
# ────────────────────────────────────────────────────────────────

@router.get("", response_model=list[NotificationOut])
async def list_notifications(
    unread_only: bool = False,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    stmt = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        stmt = stmt.where(Notification.is_read.is_(False))
    result = await session.execute(stmt.order_by(Notification.created_at.desc()))
    return [notification_out(n) for n in result.scalars().all()]


@router.post("/read-all", status_code=status.HTTP_204_NO_CONTENT)
async def mark_all_read(
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    await session.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        .values(is_read=True)
    )
    await session.commit()


@router.post("/{notification_id}/read", response_model=NotificationOut)
async def mark_read(
    notification_id: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    result = await session.execute(
        select(Notification).where(
            Notification.id == notification_id,
            Notification.user_id == user_id,
        )
    )
    item = result.scalar_one_or_none()
    if not item:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    item.is_read = True
    await session.commit()
    return notification_out(item)

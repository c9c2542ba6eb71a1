"""
Visitor feedback.

Public (no auth, rate-limited per IP):
    POST  /s/{slug}/feedback

Owner (bearer token):
    GET   /feedback                -> newest first; pending items become reviewed
    PATCH /feedback/{feedback_id}  -> set status
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import get_current_user_id
from .core.config import get_settings
from .core.db import get_session
from .models import Feedback, FeedbackStatus, FeedbackType
from .rate_limiter import rate_limit_dependency
from .tenancy import StoreContext, get_store_context, require_owned, scoped_select

settings = get_settings()
logger = logging.getLogger(__name__)

FEEDBACK_WINDOW_SECONDS = 600

public_router = APIRouter(prefix="/s/{slug}", tags=["storefront"])
router = APIRouter(prefix="/feedback", tags=["feedback"])


class FeedbackIn(BaseModel):
    visitor_name: str = Field(..., max_length=255)
    type: FeedbackType
    description: str = Field(..., max_length=5000)

    @field_validator("visitor_name", "description")
    @classmethod
    def _required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("This field is required")
        return v


class FeedbackOut(BaseModel):
    id: str
    visitor_name: str
    type: str
    description: str
    status: str
    created_at: Optional[datetime] = None


class FeedbackStatusIn(BaseModel):
    status: FeedbackStatus


def feedback_out(item: Feedback) -> FeedbackOut:
    return FeedbackOut(
        id=item.id,
        visitor_name=item.visitor_name,
        type=item.type,
        description=item.description,
        status=item.status,
        created_at=item.created_at,
    )


# ────────────────────────────────────────────────────────────────
# Service functions
# ────────────────────────────────────────────────────────────────

async def submit_feedback(session: AsyncSession, owner_id: str, data: FeedbackIn) -> Feedback:
    item = Feedback(
        store_owner_id=owner_id,
        visitor_name=data.visitor_name,
        type=data.type.value,
        description=data.description,
        status=FeedbackStatus.PENDING.value,
    )
    session.add(item)
    await session.commit()
    await session.refresh(item)
    logger.info(f"📝 New {item.type} for store {owner_id}")
    return item


async def list_feedback(session: AsyncSession, owner_id: str) -> list[FeedbackOut]:
    """
    Newest first. The returned items keep the status they had when read;
    pending items are then marked reviewed.
    """
    result = await session.execute(
        scoped_select(Feedback, owner_id).order_by(Feedback.created_at.desc())
    )
    items = result.scalars().all()
    snapshot = [feedback_out(item) for item in items]

    pending_ids = [item.id for item in items if item.status == FeedbackStatus.PENDING.value]
    if pending_ids:
        await session.execute(
            update(Feedback)
            .where(Feedback.id.in_(pending_ids))
            .values(status=FeedbackStatus.REVIEWED.value)
            .execution_options(synchronize_session=False)
        )
        await session.commit()
    return snapshot


async def set_feedback_status(
    session: AsyncSession,
    owner_id: str,
    feedback_id: str,
    new_status: FeedbackStatus,
) -> Feedback:
    item = await require_owned(session, Feedback, feedback_id, owner_id)
    if not item:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Feedback not found")
    item.status = new_status.value
    await session.commit()
    await session.refresh(item)
    return item


# ────────────────────────────────────────────────────────────────
# Routes
# ────────────────────────────────────────────────────────────────

@public_router.post(
    "/feedback",
    response_model=FeedbackOut,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit_dependency(settings.feedback_rate_limit, FEEDBACK_WINDOW_SECONDS))],
)
async def post_feedback(
    payload: FeedbackIn,
    ctx: StoreContext = Depends(get_store_context),
    session: AsyncSession = Depends(get_session),
):
    return feedback_out(await submit_feedback(session, ctx.owner_id, payload))


@router.get("", response_model=list[FeedbackOut])
async def get_feedback(
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    return await list_feedback(session, user_id)


@router.patch("/{feedback_id}", response_model=FeedbackOut)
async def patch_feedback(
    feedback_id: str,
    payload: FeedbackStatusIn,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    return feedback_out(await set_feedback_status(session, user_id, feedback_id, payload.status))

"""
Remote functions: small JSON-in / JSON-out handlers invoked by name.

    POST /functions/v1/<name>

Every function answers with the standard envelope:
    {"data": ..., "status": "success"}
    {"error": {"code": ..., "message": ...}, "status": "error"}

Admin-only (bearer token with scope=admin):
    manage-user          action = ban | unban | role | delete | approve | message
    admin-role           grant the admin role by email
    list-users           users with store name, product and visit counts
    update-system-stats  recompute platform totals
    get-system-stats     read platform totals

Public:
    handle-password-reset  action = send | verify | reset
    increment-page-view    count one storefront visit
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Literal, Optional, Type, TypeVar

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import (
    AUDIT_NOTIFICATION_SENT,
    AUDIT_ROLE_CHANGED,
    AUDIT_USER_APPROVED,
    AUDIT_USER_BANNED,
    AUDIT_USER_DELETED,
    AUDIT_USER_UNBANNED,
    log_audit,
    require_admin,
)
from .core.db import get_session
from .core.request_context import RequestContext
from .core.responses import ErrorCodes, FunctionError, success_response
from .models import AccountStatus, PageView, Product, StoreSettings, User, UserRole
from .notifications import notify_all, notify_user
from .password_reset import PasswordResetIn, handle_password_reset
from .stats import get_system_stats, increment_page_view, stats_to_dict, update_system_stats

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/functions/v1", tags=["functions"])

# Bans have no end date; a century stands in for "forever"
BAN_DURATION = timedelta(days=36500)

P = TypeVar("P", bound=BaseModel)


# ────────────────────────────────────────────────────────────────
# Payloads
# ────────────────────────────────────────────────────────────────

class ManageUserIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action: Literal["ban", "unban", "role", "delete", "approve", "message"]
    user_id: Optional[str] = Field(None, alias="userId")
    role: Optional[UserRole] = None
    message: Optional[str] = None
    message_all: Optional[str] = Field(None, alias="messageAll")


class AdminRoleIn(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)


class PageViewIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId", min_length=1)


def parse_payload(model: Type[P], payload: dict) -> P:
    """Validate a function body, turning pydantic errors into an error envelope."""
    try:
        return model.model_validate(payload or {})
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or "body"
        raise FunctionError(
            f"Invalid {field}: {first.get('msg')}",
            ErrorCodes.MISSING_FIELD if first.get("type") == "missing" else ErrorCodes.VALIDATION_ERROR,
            details={"errors": [{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()]},
        )


# ────────────────────────────────────────────────────────────────
# User management
# ────────────────────────────────────────────────────────────────

async def _get_user_or_404(session: AsyncSession, user_id: Optional[str]) -> User:
    if not user_id:
        raise FunctionError("userId is required", ErrorCodes.MISSING_FIELD)
    user = await session.get(User, user_id)
    if not user:
        raise FunctionError("User not found", ErrorCodes.USER_NOT_FOUND, 404)
    return user


def ban_user(user: User, now: Optional[datetime] = None) -> None:
    now = now or datetime.now(timezone.utc)
    user.account_status = AccountStatus.BANNED.value
    user.banned_until = now + BAN_DURATION


def unban_user(user: User) -> None:
    # Unban always lands on active, even for accounts banned while pending
    user.account_status = AccountStatus.ACTIVE.value
    user.banned_until = None


def approve_user(user: User) -> None:
    if user.account_status != AccountStatus.PENDING.value:
        raise FunctionError(
            f"Only pending accounts can be approved (current status: {user.account_status})",
            ErrorCodes.STATE_CONFLICT,
            409,
        )
    user.account_status = AccountStatus.ACTIVE.value


async def delete_user(session: AsyncSession, user: User) -> None:
    """Store settings first, then the account; remaining rows go by FK cascade."""
    await session.execute(delete(StoreSettings).where(StoreSettings.user_id == user.id))
    await session.execute(delete(User).where(User.id == user.id))


async def manage_user(session: AsyncSession, ctx: RequestContext, data: ManageUserIn) -> dict:
    if data.action == "message":
        return await _send_message(session, ctx, data)

    user = await _get_user_or_404(session, data.user_id)
    audit_action = None

    if data.action == "ban":
        ban_user(user)
        audit_action = AUDIT_USER_BANNED
    elif data.action == "unban":
        unban_user(user)
        audit_action = AUDIT_USER_UNBANNED
    elif data.action == "approve":
        approve_user(user)
        audit_action = AUDIT_USER_APPROVED
    elif data.action == "role":
        if data.role is None:
            raise FunctionError("role is required", ErrorCodes.MISSING_FIELD)
        user.role = data.role.value
        audit_action = AUDIT_ROLE_CHANGED
    elif data.action == "delete":
        await delete_user(session, user)
        audit_action = AUDIT_USER_DELETED

    await log_audit(
        session,
        actor_user_id=ctx.user_id,
        action=audit_action,
        target_type="user",
        target_id=data.user_id,
        metadata={"role": data.role.value} if data.role else None,
    )
    await session.commit()
    logger.info(f"🛠️ manage-user {data.action} on {data.user_id} by {ctx.user_id}")

    if data.action == "delete":
        return {"userId": data.user_id, "deleted": True}
    return {
        "userId": user.id,
        "account_status": user.account_status,
        "status": user.display_status,
        "role": user.role,
    }


async def _send_message(session: AsyncSession, ctx: RequestContext, data: ManageUserIn) -> dict:
    if data.message_all is not None:
        text = data.message_all.strip()
        if not text:
            raise FunctionError("Message is required", ErrorCodes.MISSING_FIELD)
        sent = await notify_all(session, text)
        target_id = None
    else:
        text = (data.message or "").strip()
        if not text:
            raise FunctionError("Message is required", ErrorCodes.MISSING_FIELD)
        user = await _get_user_or_404(session, data.user_id)
        await notify_user(session, user.id, text)
        sent = 1
        target_id = user.id

    await log_audit(
        session,
        actor_user_id=ctx.user_id,
        action=AUDIT_NOTIFICATION_SENT,
        target_type="user" if target_id else "all_users",
        target_id=target_id,
        metadata={"recipients": sent},
    )
    await session.commit()
    return {"sent": sent}


async def list_users(session: AsyncSession) -> list[dict]:
    """Every user with store, product and visit info; no pagination."""
    product_counts = (
        select(Product.user_id, func.count(Product.id).label("products_count"))
        .group_by(Product.user_id)
        .subquery()
    )
    stmt = (
        select(
            User,
            StoreSettings.store_name,
            StoreSettings.slug,
            func.coalesce(product_counts.c.products_count, 0),
            func.coalesce(PageView.view_count, 0),
        )
        .outerjoin(StoreSettings, StoreSettings.user_id == User.id)
        .outerjoin(product_counts, product_counts.c.user_id == User.id)
        .outerjoin(PageView, PageView.user_id == User.id)
        .order_by(User.created_at.desc(), User.email)
    )
    result = await session.execute(stmt)

    users = []
    for user, store_name, slug, products_count, visits_count in result.all():
        users.append({
            "id": user.id,
            "email": user.email,
            "phone": user.phone,
            "role": user.role,
            "account_status": user.account_status,
            "status": user.display_status,
            "banned_until": user.banned_until.isoformat() if user.banned_until else None,
            "created_at": user.created_at.isoformat() if user.created_at else None,
            "last_sign_in_at": user.last_sign_in_at.isoformat() if user.last_sign_in_at else None,
            "store_name": store_name,
            "slug": slug,
            "productsCount": products_count,
            "visitsCount": visits_count,
        })
    return users


async def grant_admin_role(session: AsyncSession, ctx: RequestContext, email: str) -> dict:
    result = await session.execute(select(User).where(func.lower(User.email) == email.strip().lower()))
    user = result.scalar_one_or_none()
    if not user:
        raise FunctionError("User not found", ErrorCodes.USER_NOT_FOUND, 404)

    user.role = UserRole.ADMIN.value
    await log_audit(
        session,
        actor_user_id=ctx.user_id,
        action=AUDIT_ROLE_CHANGED,
        target_type="user",
        target_id=user.id,
        metadata={"role": UserRole.ADMIN.value},
    )
    await session.commit()
    return {"userId": user.id, "role": user.role}


# ────────────────────────────────────────────────────────────────
# Routes
# ────────────────────────────────────────────────────────────────

@router.post("/manage-user")
async def manage_user_function(
    payload: Optional[dict[str, Any]] = Body(None),
    ctx: RequestContext = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    data = parse_payload(ManageUserIn, payload)
    return success_response(await manage_user(session, ctx, data))


@router.post("/admin-role")
async def admin_role_function(
    payload: Optional[dict[str, Any]] = Body(None),
    ctx: RequestContext = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    data = parse_payload(AdminRoleIn, payload)
    return success_response(await grant_admin_role(session, ctx, data.email))


@router.post("/list-users")
async def list_users_function(
    ctx: RequestContext = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    return success_response(await list_users(session))


@router.post("/update-system-stats")
async def update_system_stats_function(
    ctx: RequestContext = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    return success_response(stats_to_dict(await update_system_stats(session)))


@router.post("/get-system-stats")
async def get_system_stats_function(
    ctx: RequestContext = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    return success_response(stats_to_dict(await get_system_stats(session)))


@router.post("/handle-password-reset")
async def handle_password_reset_function(
    payload: Optional[dict[str, Any]] = Body(None),
    session: AsyncSession = Depends(get_session),
):
    data = parse_payload(PasswordResetIn, payload)
    return success_response(await handle_password_reset(session, data))


@router.post("/increment-page-view")
async def increment_page_view_function(
    payload: Optional[dict[str, Any]] = Body(None),
    session: AsyncSession = Depends(get_session),
):
    data = parse_payload(PageViewIn, payload)
    count = await increment_page_view(session, data.user_id)
    return success_response({"userId": data.user_id, "view_count": count})

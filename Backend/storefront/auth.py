"""
Authentication & Authorization Module

Identity extraction, password hashing, role checks and audit logging.

ARCHITECTURE:
    - RequestContext is the SINGLE SOURCE OF TRUTH for identity
    - Store owners only ever touch rows keyed by their own user id
    - Admin routes require a signed token with scope=admin; the admin panel's
      client-local session record is never trusted by the server

ROUTES:
    POST /auth/signup        email + password, pending until approved
    POST /auth/login         owner bearer token
    POST /auth/admin/login   admin email + PIN, admin bearer token
    GET  /auth/me

USAGE:
    from storefront.auth import get_current_user_id, require_admin

    @router.get("/store/settings")
    async def handler(user_id: str = Depends(get_current_user_id)):
        ...
"""

import logging
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from passlib.hash import pbkdf2_sha256
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .core.config import get_settings
from .core.db import get_session
from .core.request_context import RequestContext, get_request_context
from .models import AccountStatus, AuditLog, User, UserRole
from .tokens import TOKEN_SCOPE_ADMIN, TOKEN_SCOPE_OWNER, create_access_token

logger = logging.getLogger(__name__)


__all__ = [
    "router",
    "get_current_user_id",
    "require_admin",
    "hash_password",
    "verify_password",
    "log_audit",
    "AUDIT_SETTINGS_UPDATED",
    "AUDIT_SLUG_CHANGED",
    "AUDIT_BANNER_UPLOADED",
    "AUDIT_USER_BANNED",
    "AUDIT_USER_UNBANNED",
    "AUDIT_USER_APPROVED",
    "AUDIT_USER_DELETED",
    "AUDIT_ROLE_CHANGED",
    "AUDIT_NOTIFICATION_SENT",
]


# ============================================================================
# IDENTITY EXTRACTION
# ============================================================================

async def get_current_user_id(ctx: RequestContext = Depends(get_request_context)) -> str:
    """
    Return the signed-in store owner's user id.

    Admin tokens are not owner identities and are refused here.

    Raises:
        HTTPException 403: If called with an admin token
    """
    if ctx.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin tokens cannot be used for store owner routes.",
        )
    return ctx.user_id


async def require_admin(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
    """
    Require an admin-scoped token, or an owner token whose account holds
    the admin role.

    Raises:
        HTTPException 403: If the caller is neither
    """
    if not (ctx.is_admin or ctx.role == UserRole.ADMIN.value):
        logger.warning(f"Authorization failed: {ctx.user_id} is not an admin")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access only",
        )
    return ctx


# ============================================================================
# PASSWORDS
# ============================================================================

def hash_password(password: str) -> str:
    return pbkdf2_sha256.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return pbkdf2_sha256.verify(password, password_hash)
    except ValueError:
        # Malformed hash in the row
        logger.error("Stored password hash could not be parsed")
        return False


# ============================================================================
# AUDIT LOGGING HELPERS
# ============================================================================

async def log_audit(
    session: AsyncSession,
    *,
    actor_user_id: str,
    action: str,
    target_type: Optional[str] = None,
    target_id: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> AuditLog:
    """
    Create an audit log entry.

    IMPORTANT: Do NOT include PII (phone numbers, emails) in metadata.
    The caller controls the transaction; this only flushes.
    """
    audit_log = AuditLog(
        actor_user_id=actor_user_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        extra_data=metadata,  # Maps to 'metadata' column in DB
    )
    session.add(audit_log)
    await session.flush()

    logger.info(f"Audit: {action} by {actor_user_id} (target={target_type}:{target_id})")

    return audit_log


# ============================================================================
# COMMON AUDIT ACTIONS
# ============================================================================

# Store configuration
AUDIT_SETTINGS_UPDATED = "store.settings_updated"
AUDIT_SLUG_CHANGED = "store.slug_changed"
AUDIT_BANNER_UPLOADED = "store.banner_uploaded"

# Admin user management
AUDIT_USER_BANNED = "user.banned"
AUDIT_USER_UNBANNED = "user.unbanned"
AUDIT_USER_APPROVED = "user.approved"
AUDIT_USER_DELETED = "user.deleted"
AUDIT_ROLE_CHANGED = "user.role_changed"
AUDIT_NOTIFICATION_SENT = "notification.sent"


# ============================================================================
# ROUTES
# ============================================================================

router = APIRouter(prefix="/auth", tags=["auth"])

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 6


class SignupIn(BaseModel):
    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=MIN_PASSWORD_LENGTH, max_length=128)
    phone: Optional[str] = Field(None, max_length=32)

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        v = v.strip().lower()
        if not _EMAIL_RE.match(v):
            raise ValueError("Invalid email address")
        return v


class LoginIn(BaseModel):
    email: str
    password: str


class AdminLoginIn(BaseModel):
    email: str
    pin: str


class TokenOut(BaseModel):
    access_token: Optional[str] = None
    token_type: str = "bearer"
    expires_in: Optional[int] = None
    user_id: str
    role: str
    account_status: str


class AdminTokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    email: str


class AccountOut(BaseModel):
    id: str
    email: str
    phone: Optional[str] = None
    role: str
    account_status: str


def _owner_token(user: User) -> TokenOut:
    """Account summary, with a bearer token only once the account is approved."""
    settings = get_settings()
    if user.is_pending():
        return TokenOut(user_id=user.id, role=user.role, account_status=user.account_status)
    return TokenOut(
        access_token=create_access_token(user.id, scope=TOKEN_SCOPE_OWNER),
        expires_in=settings.access_token_hours * 3600,
        user_id=user.id,
        role=user.role,
        account_status=user.account_status,
    )


@router.post("/signup", response_model=TokenOut, status_code=status.HTTP_201_CREATED)
async def signup(payload: SignupIn, session: AsyncSession = Depends(get_session)):
    settings = get_settings()
    existing = await session.execute(select(User.id).where(func.lower(User.email) == payload.email))
    if existing.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="An account with this email already exists",
        )

    user = User(
        email=payload.email,
        password_hash=hash_password(payload.password),
        phone=payload.phone,
        account_status=(
            AccountStatus.PENDING.value if settings.require_approval else AccountStatus.ACTIVE.value
        ),
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    logger.info(f"✅ New account {user.id} ({user.account_status})")
    return _owner_token(user)


@router.post("/login", response_model=TokenOut)
async def login(payload: LoginIn, session: AsyncSession = Depends(get_session)):
    result = await session.execute(
        select(User).where(func.lower(User.email) == payload.email.strip().lower())
    )
    user = result.scalar_one_or_none()
    if not user or not verify_password(payload.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )
    if user.is_banned():
        logger.warning(f"Banned user {user.id} tried to sign in")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="This account has been banned.",
        )
    if user.is_pending():
        logger.info(f"Pending user {user.id} tried to sign in")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Your account is awaiting approval.",
        )

    user.last_sign_in_at = datetime.now(timezone.utc)
    await session.commit()
    return _owner_token(user)


@router.post("/admin/login", response_model=AdminTokenOut)
async def admin_login(payload: AdminLoginIn):
    """
    Exchange the configured admin email + PIN for an admin-scoped token.

    The admin panel stores this token in its local session record and sends
    it on every privileged call.
    """
    settings = get_settings()
    if not settings.admin_pin:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin login is not configured",
        )

    email_ok = payload.email.strip().lower() == settings.admin_email.strip().lower()
    pin_ok = secrets.compare_digest(payload.pin.encode(), settings.admin_pin.encode())
    if not (email_ok and pin_ok):
        logger.warning("Failed admin login attempt")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin credentials",
        )

    token = create_access_token(
        settings.admin_email.lower(),
        scope=TOKEN_SCOPE_ADMIN,
        expires_delta=timedelta(hours=settings.admin_session_hours),
    )
    logger.info("🔐 Admin signed in")
    return AdminTokenOut(
        access_token=token,
        expires_in=settings.admin_session_hours * 3600,
        email=settings.admin_email.lower(),
    )


@router.get("/me", response_model=AccountOut)
async def me(
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    user = await session.get(User, user_id)
    return AccountOut(
        id=user.id,
        email=user.email,
        phone=user.phone,
        role=user.role,
        account_status=user.account_status,
    )

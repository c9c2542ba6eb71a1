"""
Password reset by one-time code.

Flow (all through the handle-password-reset remote function):
    send   {email}                         -> emails a 6-digit code
    verify {email, code}                   -> marks the code verified
    reset  {email, code, newPassword}      -> sets the new password

Codes expire after OTP_TTL_MINUTES. Each wrong guess counts against the
newest code; after OTP_MAX_ATTEMPTS the code is locked and a new one has to
be requested. Sending a new code retires the previous ones.
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Literal, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import hash_password
from .core.config import get_settings
from .core.responses import ErrorCodes, FunctionError
from .emailer import send_password_reset_code
from .models import PasswordResetOtp, User

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


class PasswordResetIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action: Literal["send", "verify", "reset"]
    email: str = Field(..., min_length=3, max_length=255)
    code: Optional[str] = Field(None, pattern=r"^\d{6}$")
    new_password: Optional[str] = Field(None, alias="newPassword")


def generate_code() -> str:
    return f"{secrets.randbelow(10 ** 6):06d}"


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


async def _find_user(session: AsyncSession, email: str) -> Optional[User]:
    result = await session.execute(select(User).where(func.lower(User.email) == email.strip().lower()))
    return result.scalar_one_or_none()


async def _latest_open_code(session: AsyncSession, email: str) -> Optional[PasswordResetOtp]:
    result = await session.execute(
        select(PasswordResetOtp)
        .where(
            PasswordResetOtp.email == email.strip().lower(),
            PasswordResetOtp.is_used.is_(False),
        )
        .order_by(PasswordResetOtp.created_at.desc(), PasswordResetOtp.expires_at.desc())
    )
    return result.scalars().first()


# ────────────────────────────────────────────────────────────────
# Actions
# ────────────────────────────────────────────────────────────────

async def send_code(session: AsyncSession, email: str, now: Optional[datetime] = None) -> dict:
    settings = get_settings()
    now = now or datetime.now(timezone.utc)

    user = await _find_user(session, email)
    if not user:
        raise FunctionError("No account found with this email", ErrorCodes.USER_NOT_FOUND, 404)

    normalized = user.email.lower()
    # Retire earlier codes so only the newest one can be verified
    await session.execute(
        update(PasswordResetOtp)
        .where(PasswordResetOtp.email == normalized, PasswordResetOtp.is_used.is_(False))
        .values(is_used=True)
    )

    code = generate_code()
    session.add(
        PasswordResetOtp(
            user_id=user.id,
            email=normalized,
            otp_code=code,
            expires_at=now + timedelta(minutes=settings.otp_ttl_minutes),
        )
    )
    await session.commit()

    try:
        sent = await send_password_reset_code(normalized, code, settings.otp_ttl_minutes)
    except httpx.HTTPError as e:
        logger.error(f"❌ Reset email to user {user.id} failed: {e}")
        raise FunctionError("Failed to send reset email", ErrorCodes.INTERNAL_ERROR, 502)

    if not sent:
        logger.warning(f"⚠️ Reset code for user {user.id} created but no email was sent")
        return {"message": "Reset code created but email delivery is not configured", "emailSent": False}

    logger.info(f"📧 Password reset code issued for user {user.id}")
    return {"message": "Reset code sent", "emailSent": True}


async def verify_code(
    session: AsyncSession,
    email: str,
    code: Optional[str],
    now: Optional[datetime] = None,
) -> dict:
    settings = get_settings()
    now = now or datetime.now(timezone.utc)
    if not code:
        raise FunctionError("Code is required", ErrorCodes.MISSING_FIELD)

    otp = await _latest_open_code(session, email)
    if otp is None or otp.is_expired(now):
        raise FunctionError("Invalid or expired code", ErrorCodes.VALIDATION_ERROR)

    if otp.attempts >= settings.otp_max_attempts:
        raise FunctionError(
            "Too many attempts. Request a new code.", ErrorCodes.STATE_CONFLICT, 429
        )

    if not secrets.compare_digest(otp.otp_code, code):
        otp.attempts += 1
        await session.commit()
        logger.info(f"Wrong reset code for user {otp.user_id} (attempt {otp.attempts})")
        raise FunctionError("Invalid or expired code", ErrorCodes.VALIDATION_ERROR)

    otp.verified_at = now
    await session.commit()
    return {"verified": True}


async def reset_password(
    session: AsyncSession,
    email: str,
    code: Optional[str],
    new_password: Optional[str],
    now: Optional[datetime] = None,
) -> dict:
    settings = get_settings()
    now = now or datetime.now(timezone.utc)
    if not code:
        raise FunctionError("Code is required", ErrorCodes.MISSING_FIELD)
    if not new_password or len(new_password) < MIN_PASSWORD_LENGTH:
        raise FunctionError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
            ErrorCodes.VALIDATION_ERROR,
        )

    otp = await _latest_open_code(session, email)
    verified_window = timedelta(minutes=settings.otp_ttl_minutes)
    if (
        otp is None
        or otp.verified_at is None
        or otp.otp_code != code
        or now - _as_utc(otp.verified_at) > verified_window
    ):
        raise FunctionError("Code has not been verified or has expired", ErrorCodes.VALIDATION_ERROR)

    user = await session.get(User, otp.user_id)
    if user is None:
        raise FunctionError("User not found", ErrorCodes.USER_NOT_FOUND, 404)

    user.password_hash = hash_password(new_password)
    otp.is_used = True
    await session.commit()
    logger.info(f"🔑 Password reset for user {user.id}")
    return {"message": "Password updated"}


async def handle_password_reset(session: AsyncSession, data: PasswordResetIn) -> dict:
    if data.action == "send":
        return await send_code(session, data.email)
    if data.action == "verify":
        return await verify_code(session, data.email, data.code)
    return await reset_password(session, data.email, data.code, data.new_password)

"""
Access token issuing and verification.

Tokens are HS256 JWTs signed with JWT_SECRET_KEY. Two scopes exist:

    owner  - a store owner signed in with email + password
    admin  - the admin panel, issued by /auth/admin/login

Usage:
    from storefront.tokens import create_access_token, verify_access_token

    token = create_access_token(user.id, scope=TOKEN_SCOPE_OWNER)
    payload = verify_access_token(token)
    user_id = payload["sub"]
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import HTTPException, status

from .core.config import get_settings

logger = logging.getLogger(__name__)

TOKEN_SCOPE_OWNER = "owner"
TOKEN_SCOPE_ADMIN = "admin"


def create_access_token(
    subject: str,
    scope: str = TOKEN_SCOPE_OWNER,
    expires_delta: Optional[timedelta] = None,
    extra_claims: Optional[dict] = None,
) -> str:
    settings = get_settings()
    if expires_delta is None:
        expires_delta = timedelta(hours=settings.access_token_hours)

    now = datetime.now(timezone.utc)
    payload = {
        "sub": subject,
        "scope": scope,
        "iat": now,
        "exp": now + expires_delta,
    }
    if extra_claims:
        payload.update(extra_claims)
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def verify_access_token(token: str) -> dict:
    """
    Verify a bearer token and return its payload.

    Raises:
        HTTPException 401: If the token is expired, tampered with, or has no subject
    """
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        logger.info("Rejected expired access token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired. Please sign in again.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError as e:
        logger.warning(f"Invalid access token: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing user identifier",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return payload

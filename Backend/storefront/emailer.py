import logging

import httpx

from .core.config import get_settings

logger = logging.getLogger(__name__)

RESEND_URL = "https://api.resend.com/emails"


async def send_email(to_email: str, subject: str, html: str) -> bool:
    """
    Send one email through Resend.

    Returns False without sending when Resend is not configured.
    Raises httpx.HTTPError when Resend rejects the request.
    """
    settings = get_settings()
    if not settings.resend_api_key or not settings.resend_from:
        logger.warning("Resend is not configured; skipping email send.")
        return False

    payload = {
        "from": settings.resend_from,
        "to": to_email,
        "subject": subject,
        "html": html,
    }
    headers = {
        "Authorization": f"Bearer {settings.resend_api_key}",
        "Content-Type": "application/json",
    }

    async with httpx.AsyncClient(timeout=10) as client:
        response = await client.post(RESEND_URL, json=payload, headers=headers)
        response.raise_for_status()
    return True


async def send_password_reset_code(to_email: str, code: str, ttl_minutes: int) -> bool:
    html = (
        "<p>Use this code to reset your password:</p>"
        f"<p style=\"font-size:24px;letter-spacing:4px\"><strong>{code}</strong></p>"
        f"<p>The code expires in {ttl_minutes} minutes. "
        "If you did not ask for a reset, ignore this email.</p>"
    )
    return await send_email(to_email, "Your password reset code", html)

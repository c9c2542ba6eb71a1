"""
Admin user management over remote functions.

Every action is one manage-user call followed by a fresh list-users, so the
displayed list always reflects the backend.
"""

import logging
from typing import Optional, Sequence

from .functions import FunctionsClient

logger = logging.getLogger(__name__)

ROLES = ("user", "admin")


def filter_users(users: Sequence[dict], query: str = "", pending_only: bool = False) -> list[dict]:
    """
    Case-insensitive substring match on email, store name or phone.

    With pending_only, only accounts still waiting for approval are kept.
    A blank query keeps everyone.
    """
    needle = (query or "").strip().lower()
    result = []
    for user in users:
        if pending_only and user.get("account_status") != "pending":
            continue
        if needle:
            haystack = (user.get("email"), user.get("store_name"), user.get("phone"))
            if not any(needle in (value or "").lower() for value in haystack):
                continue
        result.append(user)
    return result


class UserManager:
    def __init__(self, client: FunctionsClient):
        self.client = client
        self.users: list[dict] = []

    async def list_users(self) -> list[dict]:
        self.users = list(await self.client.invoke("list-users") or [])
        return self.users

    async def _act(self, action: str, user_id: str, **extra) -> Optional[dict]:
        if not user_id:
            raise ValueError("user_id is required")
        result = await self.client.invoke("manage-user", {"action": action, "userId": user_id, **extra})
        logger.info(f"manage-user {action} -> {user_id}")
        await self.list_users()
        return result

    async def set_ban(self, user_id: str, banned: bool) -> Optional[dict]:
        return await self._act("ban" if banned else "unban", user_id)

    async def set_role(self, user_id: str, role: str) -> Optional[dict]:
        if role not in ROLES:
            raise ValueError(f"role must be one of {', '.join(ROLES)}")
        return await self._act("role", user_id, role=role)

    async def delete_user(self, user_id: str) -> Optional[dict]:
        return await self._act("delete", user_id)

    async def approve_pending(self, user_id: str) -> Optional[dict]:
        return await self._act("approve", user_id)

    async def grant_admin(self, email: str) -> Optional[dict]:
        if not email or not email.strip():
            raise ValueError("email is required")
        result = await self.client.invoke("admin-role", {"email": email.strip()})
        await self.list_users()
        return result

    def get(self, user_id: str) -> Optional[dict]:
        return next((u for u in self.users if u.get("id") == user_id), None)

    def filtered(self, query: str = "", pending_only: bool = False) -> list[dict]:
        return filter_users(self.users, query, pending_only)

"""
Admin session guard.

The admin panel keeps its session as a JSON record under the key
"adminSession" in a small client-local key/value file:

    {"email": "...", "timestamp": "2026-10-19T08:00:00+00:00",
     "isAdmin": true, "backendSession": {"access_token": "..."}}

check() grants access when the record names the configured admin email,
isAdmin is true, and the record is at most ADMIN_SESSION_HOURS old. An
expired record is removed. A record that cannot be parsed denies access and
is left in place.

The record only gates the client. The backend checks the signed admin
token kept in backendSession on every privileged call.
"""

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

import httpx

from ..core.config import get_settings

logger = logging.getLogger(__name__)

ADMIN_SESSION_KEY = "adminSession"


def _parse_timestamp(value: Any) -> datetime:
    """ISO-8601 string, or epoch milliseconds."""
    if isinstance(value, bool):
        raise ValueError("timestamp must be a string or a number")
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError) as e:
            raise ValueError(f"timestamp out of range: {value}") from e
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    raise ValueError("timestamp must be a string or a number")


@dataclass
class AdminSession:
    email: str
    timestamp: datetime
    is_admin: bool
    backend_session: Optional[dict] = None

    def to_json(self) -> str:
        return json.dumps({
            "email": self.email,
            "timestamp": self.timestamp.isoformat(),
            "isAdmin": self.is_admin,
            "backendSession": self.backend_session,
        })

    @classmethod
    def from_json(cls, raw: str) -> "AdminSession":
        """
        Raises:
            ValueError: If the record is not a JSON object with email, timestamp and isAdmin
        """
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("admin session record is not an object")
        try:
            email = data["email"]
            timestamp = _parse_timestamp(data["timestamp"])
        except KeyError as e:
            raise ValueError(f"admin session record is missing {e}") from e
        if not isinstance(email, str):
            raise ValueError("email must be a string")
        return cls(
            email=email,
            timestamp=timestamp,
            is_admin=data.get("isAdmin") is True,
            backend_session=data.get("backendSession"),
        )

    @property
    def access_token(self) -> Optional[str]:
        if isinstance(self.backend_session, dict):
            return self.backend_session.get("access_token")
        return None


class LocalSessionStore:
    """String values by key in one JSON file, like browser local storage."""

    def __init__(self, path: Optional[str] = None):
        self.path = Path(os.path.expanduser(path or get_settings().admin_session_path))

    def _load(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, ValueError) as e:
            logger.error(f"Local storage file {self.path} is unreadable: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data), encoding="utf-8")
        tmp.replace(self.path)

    def get(self, key: str) -> Optional[str]:
        value = self._load().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def remove(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._save(data)


class SessionGuard:
    def __init__(
        self,
        store: LocalSessionStore,
        admin_email: Optional[str] = None,
        max_age: Optional[timedelta] = None,
    ):
        settings = get_settings()
        self.store = store
        self.admin_email = (admin_email or settings.admin_email).strip().lower()
        self.max_age = max_age or timedelta(hours=settings.admin_session_hours)

    def _read(self) -> Optional[AdminSession]:
        raw = self.store.get(ADMIN_SESSION_KEY)
        if raw is None:
            return None
        try:
            return AdminSession.from_json(raw)
        except ValueError as e:
            logger.error(f"Could not read admin session: {e}")
            return None

    def check(self, now: Optional[datetime] = None) -> bool:
        """True when a valid, unexpired admin session is stored."""
        session = self._read()
        if session is None:
            return False

        if session.email != self.admin_email or not session.is_admin:
            return False

        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        elapsed = now - session.timestamp
        if elapsed <= self.max_age:
            return True

        logger.info("Admin session expired, clearing it")
        self.clear()
        return False

    def current(self, now: Optional[datetime] = None) -> Optional[AdminSession]:
        """The stored session if check() passes, else None."""
        if not self.check(now):
            return None
        return self._read()

    def start(
        self,
        email: str,
        backend_session: Optional[dict] = None,
        now: Optional[datetime] = None,
    ) -> AdminSession:
        session = AdminSession(
            email=email.strip().lower(),
            timestamp=now or datetime.now(timezone.utc),
            is_admin=True,
            backend_session=backend_session,
        )
        self.store.set(ADMIN_SESSION_KEY, session.to_json())
        logger.info("🔐 Admin session started")
        return session

    def clear(self) -> None:
        self.store.remove(ADMIN_SESSION_KEY)

    async def sign_in(
        self,
        email: str,
        pin: str,
        api_base_url: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> AdminSession:
        """
        Exchange email + PIN for an admin token and store the session.

        Raises:
            PermissionError: If the backend rejects the credentials
        """
        async with httpx.AsyncClient(transport=transport, timeout=10.0) as client:
            response = await client.post(
                f"{api_base_url.rstrip('/')}/auth/admin/login",
                json={"email": email, "pin": pin},
            )
        if response.is_error:
            try:
                detail = response.json().get("detail")
            except ValueError:
                detail = None
            raise PermissionError(detail or f"Admin login failed ({response.status_code})")

        body = response.json()
        return self.start(
            email,
            backend_session={
                "access_token": body["access_token"],
                "expires_in": body.get("expires_in"),
            },
        )

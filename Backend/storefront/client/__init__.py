"""
Admin panel client.

Everything the admin UI needs outside the browser: the local session
guard, the remote function client, and the state holders for composing
notifications, managing users and polling stats.
"""

from .functions import FunctionsClient, RemoteFunctionError
from .notifications import NotificationComposer
from .session_guard import ADMIN_SESSION_KEY, AdminSession, LocalSessionStore, SessionGuard
from .stats import StatsPoller
from .users import UserManager, filter_users

__all__ = [
    "FunctionsClient",
    "RemoteFunctionError",
    "NotificationComposer",
    "ADMIN_SESSION_KEY",
    "AdminSession",
    "LocalSessionStore",
    "SessionGuard",
    "StatsPoller",
    "UserManager",
    "filter_users",
]

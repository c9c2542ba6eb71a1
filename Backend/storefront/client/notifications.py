"""
Notification composer for the admin panel.

Holds the text being composed and sends it through the manage-user remote
function. A successful send clears the text; a failed one keeps it and
records the backend's error message.
"""

import logging
from typing import Optional

from .functions import FunctionsClient, RemoteFunctionError

logger = logging.getLogger(__name__)


class NotificationComposer:
    def __init__(self, client: FunctionsClient):
        self.client = client
        self.message = ""
        self.last_error: Optional[str] = None

    def _take_message(self, message: Optional[str]) -> str:
        if message is not None:
            self.message = message
        text = self.message.strip()
        if not text:
            raise ValueError("Message cannot be empty")
        return text

    async def _send(self, payload: dict) -> dict:
        try:
            result = await self.client.invoke("manage-user", payload)
        except RemoteFunctionError as e:
            self.last_error = e.message
            logger.error(f"❌ Notification not sent: {e.message}")
            raise
        self.message = ""
        self.last_error = None
        return result

    async def send_to_all(self, message: Optional[str] = None) -> dict:
        """
        Broadcast to every user.

        Raises:
            ValueError: If the message is blank (nothing is sent)
            RemoteFunctionError: If the backend rejects the call
        """
        text = self._take_message(message)
        result = await self._send({"action": "message", "messageAll": text})
        logger.info(f"📣 Broadcast sent to {result.get('sent') if result else '?'} users")
        return result

    async def send_to_user(self, user_id: str, message: Optional[str] = None) -> dict:
        if not user_id:
            raise ValueError("A recipient is required")
        text = self._take_message(message)
        return await self._send({"action": "message", "userId": user_id, "message": text})

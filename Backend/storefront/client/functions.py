"""
HTTP client for the remote functions under /functions/v1/<name>.

Usage:
    client = FunctionsClient(access_token=token)
    users = await client.invoke("list-users")

Errors come back as RemoteFunctionError carrying the backend's message
verbatim. Nothing is retried.
"""

import logging
from typing import Any, Optional

import httpx

from ..core.config import get_settings

logger = logging.getLogger(__name__)


class RemoteFunctionError(Exception):
    """A remote function answered with an error (or could not be reached)."""

    def __init__(
        self,
        function: str,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
    ):
        self.function = function
        self.message = message
        self.status_code = status_code
        self.code = code
        super().__init__(message)


def _error_from_body(body: Any, response: httpx.Response) -> tuple[str, Optional[str]]:
    """Pull (message, code) out of whatever error shape the backend sent."""
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return error["message"], error.get("code")
        if isinstance(error, str) and error:
            return error, None

        detail = body.get("detail")
        if isinstance(detail, str) and detail:
            return detail, None
        if isinstance(detail, list) and detail:
            first = detail[0]
            if isinstance(first, dict) and first.get("msg"):
                return first["msg"], None

    text = response.text.strip()
    return text or f"HTTP {response.status_code}", None


class FunctionsClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        access_token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ):
        self.base_url = (base_url or get_settings().functions_base_url).rstrip("/")
        self.access_token = access_token
        self.transport = transport
        self.timeout = timeout

    def set_access_token(self, token: Optional[str]) -> None:
        self.access_token = token

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    async def invoke(self, name: str, payload: Optional[dict] = None) -> Any:
        """
        POST the payload to a remote function and return its "data".

        Raises:
            RemoteFunctionError: On transport failure or any error response
        """
        url = f"{self.base_url}/{name}"
        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
                response = await client.post(url, json=payload or {}, headers=self._headers())
        except httpx.HTTPError as e:
            logger.error(f"❌ {name}: request failed: {e}")
            raise RemoteFunctionError(name, str(e)) from e

        try:
            body = response.json()
        except ValueError:
            body = None

        failed = response.is_error or (isinstance(body, dict) and body.get("status") == "error")
        if failed:
            message, code = _error_from_body(body, response)
            logger.warning(f"{name} failed ({response.status_code}): {message}")
            raise RemoteFunctionError(name, message, response.status_code, code)

        if isinstance(body, dict) and "data" in body:
            return body["data"]
        return body

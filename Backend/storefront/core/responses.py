"""
Remote Function Response Envelope

Remote functions (/functions/v1/<name>) answer with one envelope so the
admin panel can surface backend errors verbatim.

RESPONSE FORMAT:
    Success:
        {
            "data": <response data>,
            "status": "success"
        }

    Error:
        {
            "error": {
                "code": "ERROR_CODE",
                "message": "Human-readable message",
                "details": {...}  # Optional extra context
            },
            "status": "error"
        }
"""

from typing import Any, Optional

from fastapi import Request
from fastapi.responses import JSONResponse


# ============================================================================
# ERROR CODES
# ============================================================================

class ErrorCodes:
    """Error codes carried in the envelope."""

    # Not found errors (404)
    NOT_FOUND = "NOT_FOUND"
    USER_NOT_FOUND = "USER_NOT_FOUND"

    # Validation errors (400)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    MISSING_FIELD = "MISSING_FIELD"

    # State errors (409/429)
    STATE_CONFLICT = "STATE_CONFLICT"

    # Upstream failures (502)
    INTERNAL_ERROR = "INTERNAL_ERROR"


class FunctionError(Exception):
    """Raised by a remote function handler; rendered as an error envelope."""

    def __init__(
        self,
        message: str,
        code: str = ErrorCodes.VALIDATION_ERROR,
        status_code: int = 400,
        details: Optional[dict] = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details
        super().__init__(message)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def success_response(data: Any) -> dict:
    return {"data": data, "status": "success"}


def error_response(
    code: str,
    message: str,
    details: Optional[dict] = None,
) -> dict:
    response = {
        "error": {
            "code": code,
            "message": message,
        },
        "status": "error",
    }
    if details:
        response["error"]["details"] = details
    return response


async def function_error_handler(request: Request, exc: FunctionError) -> JSONResponse:
    """Registered on the app for FunctionError."""
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(exc.code, exc.message, exc.details),
    )

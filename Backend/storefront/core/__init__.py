"""
Core module - configuration, database, request identity and the remote function envelope.
"""
from .config import Settings, get_settings
from .db import AsyncSessionLocal, Base, engine, get_session
from .request_context import RequestContext, get_request_context, resolve_request_context
from .responses import (
    ErrorCodes,
    FunctionError,
    error_response,
    function_error_handler,
    success_response,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "get_session",
    "Base",
    "engine",
    "AsyncSessionLocal",
    # Request Context
    "RequestContext",
    "resolve_request_context",
    "get_request_context",
    # Envelope
    "ErrorCodes",
    "FunctionError",
    "success_response",
    "error_response",
    "function_error_handler",
]

"""
Request context for log correlation.

Holds the request_id / correlation_id of the current request in
contextvars so they follow the request across awaits.

Usage:
    # In middleware (automatic)
    set_request_id(generate_request_id())

    # In error handling
    capture_exception(exc, context={"storage_id": storage_id})
"""

from contextvars import ContextVar
from typing import Any, Dict, Optional
import uuid

__all__ = [
    "set_request_id",
    "get_request_id",
    "generate_request_id",
    "set_correlation_id",
    "get_correlation_id",
    "clear_context",
    "get_context_dict",
]

_request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


def generate_request_id() -> str:
    """
    Generate a new request ID.

    Format: req_{16 hex chars}
    """
    return f"req_{uuid.uuid4().hex[:16]}"


def set_request_id(request_id: str) -> None:
    _request_id.set(request_id)


def get_request_id() -> Optional[str]:
    return _request_id.get()


def set_correlation_id(correlation_id: str) -> None:
    """Set the ID passed through X-Correlation-ID by an upstream caller."""
    _correlation_id.set(correlation_id)


def get_correlation_id() -> Optional[str]:
    return _correlation_id.get()


def clear_context() -> None:
    _request_id.set(None)
    _correlation_id.set(None)


def get_context_dict() -> Dict[str, Any]:
    """Return the non-empty context values, for enriching log events."""
    context = {
        "request_id": get_request_id(),
        "correlation_id": get_correlation_id(),
    }
    return {key: value for key, value in context.items() if value is not None}

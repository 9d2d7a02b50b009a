"""
Error taxonomy and structured error capture.

Exception classes:
- ConfigurationError: missing settings / unregistered default backend (fatal)
- NotFoundError: unknown storage id or post
- CapabilityError: operation the backend structurally cannot perform
  (UnsupportedOperationError, MissingMetadataError); never retried
- DuplicateContentError: in-place update would collide with another post
- PostExistsError: create_post called again for an already stored post
- StorageError: backend failure
- TransientError: retryable I/O failure (TransientStorageError,
  PoolExhaustedError); retry policy belongs to the caller

Usage:
    # Capture an exception with request context
    capture_exception(exc, context={"storage_id": storage_id})

    # Context manager for operations
    with ErrorHandler("delete_blob", context={"storage_id": sid}, reraise=True):
        await backend.delete(sid)
"""

from typing import Optional, Any, Dict
from datetime import datetime, timezone
from contextlib import contextmanager
import structlog

from kpgb.core.context import get_context_dict

logger = structlog.get_logger(__name__)

__all__ = [
    "KpgbError",
    "ConfigurationError",
    "NotFoundError",
    "CapabilityError",
    "UnsupportedOperationError",
    "MissingMetadataError",
    "DuplicateContentError",
    "PostExistsError",
    "StorageError",
    "TransientError",
    "TransientStorageError",
    "PoolExhaustedError",
    "is_retryable",
    "capture_exception",
    "ErrorHandler",
    "error_boundary",
]


class KpgbError(Exception):
    """Base class for all expected failures."""

    retryable: bool = False


class ConfigurationError(KpgbError):
    """The process is misconfigured and should not continue."""


class NotFoundError(KpgbError):
    """The requested post or storage identifier does not exist."""


class CapabilityError(KpgbError):
    """The backend cannot perform this operation. Not retryable."""


class UnsupportedOperationError(CapabilityError):
    """Operation is structurally impossible for the backend (e.g. IPFS delete)."""


class MissingMetadataError(CapabilityError):
    """A required metadata key was not supplied to a store call."""

    def __init__(self, key: str, backend: str):
        super().__init__(f"{backend} storage requires '{key}' in metadata")
        self.key = key
        self.backend = backend


class DuplicateContentError(KpgbError):
    """Another post already owns this content hash."""

    def __init__(self, content_hash: str, existing_storage_id: str):
        super().__init__(
            f"Content {content_hash[:12]} already stored as {existing_storage_id}"
        )
        self.content_hash = content_hash
        self.existing_storage_id = existing_storage_id


class PostExistsError(KpgbError):
    """A post with this id is already stored; use update_post to change it."""

    def __init__(self, post_id: str, existing_storage_id: str):
        super().__init__(f"Post {post_id} already stored as {existing_storage_id}")
        self.post_id = post_id
        self.existing_storage_id = existing_storage_id


class StorageError(KpgbError):
    """A storage backend returned an unexpected failure."""


class TransientError(KpgbError):
    """I/O failure that may succeed if the caller tries again."""

    retryable = True


class TransientStorageError(TransientError, StorageError):
    """Timeout, connection failure or 5xx from a remote backend."""


class PoolExhaustedError(TransientError):
    """No database connection became available within the pool timeout."""


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, KpgbError) and exc.retryable


def capture_exception(
    exc: BaseException,
    context: Optional[Dict[str, Any]] = None,
    level: str = "error",
) -> None:
    """
    Log an exception with request context enrichment.

    Args:
        exc: Exception to capture
        context: Additional context dict (e.g., {"storage_id": "Qm..."})
        level: Log level name (debug, info, warning, error)
    """
    enriched_context = {
        **get_context_dict(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "error_type": type(exc).__name__,
        "retryable": is_retryable(exc),
        **(context or {}),
    }

    log_func = getattr(logger, level, logger.error)
    log_func("Exception captured", exc_info=exc, **enriched_context)


class ErrorHandler:
    """
    Context manager that captures errors raised by an operation.

    Usage:
        # Log and suppress
        with ErrorHandler("remove_blob", context={"storage_id": sid}):
            ...

        # Log and re-raise
        with ErrorHandler("publish", reraise=True):
            ...

    Args:
        operation: Name of the operation (included in the log event)
        context: Additional context dict
        reraise: Whether to re-raise the exception (default: False)
        level: Log level used for the captured event
    """

    def __init__(
        self,
        operation: str,
        context: Optional[Dict[str, Any]] = None,
        reraise: bool = False,
        level: str = "error",
    ):
        self.operation = operation
        self.context = context or {}
        self.reraise = reraise
        self.level = level
        self.error: Optional[BaseException] = None

    def __enter__(self) -> "ErrorHandler":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_val is None:
            return False
        if not isinstance(exc_val, Exception):
            # KeyboardInterrupt, CancelledError and friends pass through
            return False

        self.error = exc_val
        capture_exception(
            exc_val,
            context={"operation": self.operation, **self.context},
            level=self.level,
        )
        return not self.reraise


@contextmanager
def error_boundary(operation: str, **context):
    """
    Capture-and-suppress boundary for best-effort steps.

    Usage:
        with error_boundary("delete_blob", storage_id=sid):
            await backend.delete(sid)
    """
    handler = ErrorHandler(operation, context=context, reraise=False, level="warning")
    with handler:
        yield handler

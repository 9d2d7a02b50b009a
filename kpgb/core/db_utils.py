"""Database utilities for classifying driver failures.

The metadata store never retries on its own. Driver errors are translated
into the error taxonomy so callers can decide: pool exhaustion and dropped
connections become retryable TransientError subclasses, everything else
propagates unchanged.
"""

import functools
import logging
from typing import Any, Awaitable, Callable, ParamSpec, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import (
    DisconnectionError,
    InterfaceError,
    OperationalError,
    TimeoutError as PoolTimeoutError,
)
from sqlalchemy.ext.asyncio import AsyncEngine

from kpgb.core.errors import PoolExhaustedError, TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")
P = ParamSpec("P")

# Errors that indicate a transient connection failure (worth retrying by the caller)
TRANSIENT_ERRORS = (
    "database is locked",
    "database table is locked",
    "disk i/o error",
    "unable to open database file",
    "server closed the connection unexpectedly",
    "connection refused",
    "connection reset by peer",
    "connection timed out",
    "could not connect to server",
    "the database system is starting up",
    "the database system is shutting down",
)


def is_transient_error(error: Exception) -> bool:
    """Check if an error is a transient connection failure."""
    error_msg = str(error).lower()
    return any(msg in error_msg for msg in TRANSIENT_ERRORS)


def translate_db_errors(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
    """
    Decorator translating SQLAlchemy driver failures into the error taxonomy.

    - pool checkout timeout -> PoolExhaustedError
    - transient OperationalError / DisconnectionError -> TransientError
    - anything else propagates untouched
    """
    func_name = getattr(func, "__name__", "unknown")

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return await func(*args, **kwargs)  # type: ignore[arg-type]
        except PoolTimeoutError as e:
            logger.warning(f"[DB] {func_name}: connection pool exhausted: {e}")
            raise PoolExhaustedError(f"No database connection available: {e}") from e
        except (OperationalError, DisconnectionError, InterfaceError) as e:
            if not is_transient_error(e):
                raise
            logger.warning(f"[DB] {func_name}: transient database failure: {e}")
            raise TransientError(f"Transient database failure in {func_name}: {e}") from e

    return wrapper  # type: ignore[return-value]


async def check_db_connection(engine: AsyncEngine) -> bool:
    """
    Check if database connection is healthy.
    Returns True if connection is good, False otherwise.
    """
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
            return True
    except Exception as e:
        logger.error(f"[DB Health] Connection check failed: {e}")
        return False

"""
Shared HTTP plumbing for remote storage backends.

Maps transport failures and HTTP statuses onto the error taxonomy:
timeouts, connection errors, 429 and 5xx are transient; 404 is not-found;
anything else unsuccessful is a plain StorageError.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx

from kpgb.core.errors import NotFoundError, StorageError, TransientStorageError

USER_AGENT = "kpgb/0.1"


def build_client(
    base_url: str = "",
    timeout: float = 30.0,
    headers: Optional[dict] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=base_url,
        timeout=timeout,
        headers={"User-Agent": USER_AGENT, **(headers or {})},
        transport=transport,
        trust_env=False,
    )


@asynccontextmanager
async def transport_errors(backend: str, operation: str) -> AsyncIterator[None]:
    """Translate httpx transport exceptions raised inside the block."""
    try:
        yield
    except httpx.TimeoutException as e:
        raise TransientStorageError(f"{backend} {operation} timed out: {e}") from e
    except httpx.TransportError as e:
        raise TransientStorageError(f"{backend} {operation} failed: {e}") from e


def check_response(
    response: httpx.Response,
    backend: str,
    operation: str,
    not_found_statuses: tuple = (404,),
) -> None:
    """Raise the matching taxonomy error for an unsuccessful response."""
    if response.is_success:
        return
    status = response.status_code
    message = f"{backend} {operation} failed: HTTP {status}"
    if status in not_found_statuses:
        raise NotFoundError(message)
    if status == 429 or status >= 500:
        raise TransientStorageError(message)
    raise StorageError(message)

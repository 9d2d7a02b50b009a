"""
IPFS storage through the Kubo HTTP RPC API.

The identifier is the CID IPFS assigns, so identical content always maps to
the same id. Content is pinned as part of store(). Content-addressed data is
immutable: delete() always raises UnsupportedOperationError.
"""

from typing import Dict, List, Optional

import httpx
import structlog

from kpgb.core.errors import NotFoundError, StorageError, UnsupportedOperationError
from kpgb.storage.base import (
    CONTENT_TYPE_OCTET_STREAM,
    Storage,
    StorageBackend,
    StorageMetadata,
    StorageResult,
    build_result,
)
from kpgb.storage.remote import build_client, check_response, transport_errors

logger = structlog.get_logger(__name__)

DEFAULT_IPFS_API_URL = "http://localhost:5001"
ERROR_IPFS_IMMUTABLE = "IPFS content is immutable and cannot be deleted"

# Kubo answers unknown or malformed CIDs with HTTP 500 and one of these messages
_MISSING_MARKERS = ("not found", "invalid cid", "invalid path", "failed to resolve")


class IpfsStorage(Storage):
    def __init__(
        self,
        api_url: str = DEFAULT_IPFS_API_URL,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self._client = build_client(self.api_url, timeout=timeout, transport=transport)

    async def _rpc(self, operation: str, params: Optional[dict] = None, **kwargs) -> httpx.Response:
        # The RPC API only accepts POST
        async with transport_errors("IPFS", operation):
            return await self._client.post(f"/api/v0/{operation}", params=params, **kwargs)

    @staticmethod
    def _is_missing(response: httpx.Response) -> bool:
        if response.status_code == 404:
            return True
        if response.status_code != 500:
            return False
        try:
            message = str(response.json().get("Message", ""))
        except ValueError:
            message = response.text
        return any(marker in message.lower() for marker in _MISSING_MARKERS)

    async def _add(self, content: bytes) -> str:
        response = await self._rpc("add", files={"file": ("blob", content, CONTENT_TYPE_OCTET_STREAM)})
        check_response(response, "IPFS", "add")
        cid = response.json().get("Hash")
        if not cid:
            raise StorageError("No hash in IPFS add response")
        return cid

    async def _pin(self, cid: str) -> None:
        response = await self._rpc("pin/add", params={"arg": cid})
        check_response(response, "IPFS", "pin")

    async def store(self, content: bytes, metadata: Dict[str, str]) -> StorageResult:
        cid = await self._add(content)
        await self._pin(cid)
        logger.info("Stored IPFS object", cid=cid, size=len(content))
        return build_result(cid, content, metadata, url=f"ipfs://{cid}")

    async def retrieve(self, storage_id: str) -> bytes:
        response = await self._rpc("cat", params={"arg": storage_id})
        if self._is_missing(response):
            raise NotFoundError(f"IPFS object {storage_id!r} not found")
        check_response(response, "IPFS", "cat")
        return response.content

    async def exists(self, storage_id: str) -> bool:
        try:
            response = await self._rpc("object/stat", params={"arg": storage_id})
        except StorageError:
            return False
        return response.is_success

    async def delete(self, storage_id: str) -> None:
        raise UnsupportedOperationError(ERROR_IPFS_IMMUTABLE)

    async def list(self, prefix: Optional[str] = None) -> List[StorageMetadata]:
        # Enumerates pinned CIDs; prefix has no meaning for content addresses
        response = await self._rpc("pin/ls", params={"type": "recursive"})
        check_response(response, "IPFS", "pin/ls")
        keys = response.json().get("Keys") or {}
        return [StorageMetadata(id=cid, content_type="unknown") for cid in sorted(keys)]

    def storage_type(self) -> str:
        return StorageBackend.IPFS.value

    async def aclose(self) -> None:
        await self._client.aclose()

"""
Storage backend interface.

Every backend implements the same flat capability interface. Operations a
backend structurally cannot perform (deleting from a content-addressed
network) raise UnsupportedOperationError instead of being left out, so
callers can treat all backends uniformly.
"""

import hashlib
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from kpgb.core.typing import utc_now

CONTENT_TYPE_OCTET_STREAM = "application/octet-stream"
CONTENT_TYPE_JSON = "application/json"

# Metadata keys understood by the backends
METADATA_CONTENT_TYPE = "content_type"
METADATA_FILENAME = "filename"
METADATA_PATH = "path"
METADATA_MESSAGE = "message"


class StorageBackend(str, Enum):
    """Closed set of backend kinds the storage manager can hold."""

    LOCAL = "local"
    IPFS = "ipfs"
    GITHUB = "github"


class StorageMetadata(BaseModel):
    """Describes one stored object."""

    model_config = ConfigDict(frozen=True)

    id: str
    hash: str = ""  # sha256 of the stored bytes, empty when the backend can't tell
    size: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    content_type: str = CONTENT_TYPE_OCTET_STREAM
    extra: Dict[str, str] = Field(default_factory=dict)


class StorageResult(BaseModel):
    """Outcome of a store call. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: str
    url: Optional[str] = None
    metadata: StorageMetadata


def sha256_hex(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def build_result(
    storage_id: str,
    content: bytes,
    metadata: Dict[str, str],
    url: Optional[str] = None,
) -> StorageResult:
    """Assemble the StorageResult every backend returns from store()."""
    return StorageResult(
        id=storage_id,
        url=url,
        metadata=StorageMetadata(
            id=storage_id,
            hash=sha256_hex(content),
            size=len(content),
            content_type=metadata.get(METADATA_CONTENT_TYPE, CONTENT_TYPE_OCTET_STREAM),
            extra=dict(metadata),
        ),
    )


class Storage(ABC):
    """Byte storage addressed by backend-assigned identifiers."""

    @abstractmethod
    async def store(self, content: bytes, metadata: Dict[str, str]) -> StorageResult:
        """Write content and return its identifier."""

    @abstractmethod
    async def retrieve(self, storage_id: str) -> bytes:
        """Read content back. Raises NotFoundError for unknown identifiers."""

    @abstractmethod
    async def exists(self, storage_id: str) -> bool:
        """Never raises; unknown identifiers yield False."""

    @abstractmethod
    async def delete(self, storage_id: str) -> None:
        """Remove content. Immutable backends raise UnsupportedOperationError."""

    @abstractmethod
    async def list(self, prefix: Optional[str] = None) -> List[StorageMetadata]:
        """Best-effort enumeration; may be empty where the backend can't enumerate."""

    @abstractmethod
    def storage_type(self) -> str:
        """Constant backend name, e.g. "local"."""

    async def aclose(self) -> None:
        """Release network resources. No-op for local backends."""

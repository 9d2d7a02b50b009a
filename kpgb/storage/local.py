"""
Local filesystem storage.

Objects live under a base directory. The identifier is the caller-supplied
`filename` metadata value, or the sha256 of the content when none is given,
which makes unnamed writes naturally deduplicated.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

import anyio
import structlog

from kpgb.core.errors import NotFoundError, StorageError
from kpgb.storage.base import (
    METADATA_FILENAME,
    Storage,
    StorageBackend,
    StorageMetadata,
    StorageResult,
    build_result,
    sha256_hex,
)

logger = structlog.get_logger(__name__)


class LocalStorage(Storage):
    def __init__(self, base_path: str | Path):
        self.base_path = Path(base_path).resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _path(self, storage_id: str) -> Path:
        if not storage_id:
            raise StorageError("Empty storage id")
        path = (self.base_path / storage_id).resolve()
        if path != self.base_path and self.base_path not in path.parents:
            raise StorageError(f"Storage id escapes the storage directory: {storage_id!r}")
        return path

    async def store(self, content: bytes, metadata: Dict[str, str]) -> StorageResult:
        storage_id = metadata.get(METADATA_FILENAME) or sha256_hex(content)
        path = anyio.Path(self._path(storage_id))

        await path.parent.mkdir(parents=True, exist_ok=True)
        await path.write_bytes(content)

        logger.debug("Stored local object", storage_id=storage_id, size=len(content))
        return build_result(storage_id, content, metadata, url=f"file://{path}")

    async def retrieve(self, storage_id: str) -> bytes:
        path = anyio.Path(self._path(storage_id))
        try:
            return await path.read_bytes()
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError) as e:
            raise NotFoundError(f"No local object {storage_id!r}") from e

    async def exists(self, storage_id: str) -> bool:
        try:
            return await anyio.Path(self._path(storage_id)).is_file()
        except (StorageError, OSError):
            return False

    async def delete(self, storage_id: str) -> None:
        path = anyio.Path(self._path(storage_id))
        try:
            await path.unlink()
        except (FileNotFoundError, IsADirectoryError) as e:
            raise NotFoundError(f"No local object {storage_id!r}") from e

    async def list(self, prefix: Optional[str] = None) -> List[StorageMetadata]:
        search_path = anyio.Path(self._path(prefix) if prefix else self.base_path)
        if not await search_path.is_dir():
            return []

        results = []
        async for entry in search_path.iterdir():
            if not await entry.is_file():
                continue
            stat = await entry.stat()
            results.append(
                StorageMetadata(
                    id=str(Path(entry).relative_to(self.base_path)),
                    size=stat.st_size,
                    created_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                )
            )
        return sorted(results, key=lambda m: m.id)

    def storage_type(self) -> str:
        return StorageBackend.LOCAL.value

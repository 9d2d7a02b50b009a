"""
Storage manager: a registry of backends plus a configured default.

Backends are registered at startup and only looked up afterwards, so many
concurrent requests can read the registry. Registration is still guarded by
a lock for the rare runtime add.

Usage:
    manager = build_storage_manager(settings)
    result = await manager.store(b"...", {"content_type": "text/plain"})
    ipfs = manager.get_backend(StorageBackend.IPFS)
"""

from threading import Lock
from typing import Dict, Optional, Union

import structlog

from kpgb.core.config import Settings
from kpgb.core.errors import ConfigurationError
from kpgb.storage.base import Storage, StorageBackend, StorageResult
from kpgb.storage.github import GitHubStorage
from kpgb.storage.ipfs import IpfsStorage
from kpgb.storage.local import LocalStorage

logger = structlog.get_logger(__name__)

BackendKey = Union[StorageBackend, str]


def _backend_kind(key: BackendKey) -> StorageBackend:
    try:
        return StorageBackend(key)
    except ValueError as e:
        raise ConfigurationError(f"Unknown storage backend '{key}'") from e


class StorageManager:
    def __init__(self, default_backend: BackendKey):
        self.default_kind = _backend_kind(default_backend)
        self._backends: Dict[StorageBackend, Storage] = {}
        self._lock = Lock()

    def add_backend(self, kind: BackendKey, backend: Storage) -> None:
        """Register a backend, replacing any previous one of the same kind."""
        kind = _backend_kind(kind)
        with self._lock:
            # Copy-on-write so readers never see a dict mid-mutation
            backends = dict(self._backends)
            backends[kind] = backend
            self._backends = backends
        logger.info("Storage backend registered", backend=kind.value, default=kind == self.default_kind)

    def get_backend(self, kind: BackendKey) -> Optional[Storage]:
        try:
            return self._backends.get(StorageBackend(kind))
        except ValueError:
            return None

    def default_backend(self) -> Storage:
        backend = self._backends.get(self.default_kind)
        if backend is None:
            raise ConfigurationError(f"Storage backend '{self.default_kind.value}' not configured")
        return backend

    def backends(self) -> Dict[StorageBackend, Storage]:
        return dict(self._backends)

    async def store(self, content: bytes, metadata: Dict[str, str]) -> StorageResult:
        """Store through the default backend."""
        return await self.default_backend().store(content, metadata)

    async def aclose(self) -> None:
        for backend in self._backends.values():
            await backend.aclose()


def build_storage_manager(config: Settings) -> StorageManager:
    """
    Build the registry from settings.

    - IPFS becomes the default when IPFS_API_URL is set, otherwise local disk
    - local disk is always registered as the fallback
    - GitHub is added when owner, repo and token are all configured
    """
    default = StorageBackend.IPFS if config.IPFS_API_URL else StorageBackend.LOCAL
    manager = StorageManager(default)

    manager.add_backend(StorageBackend.LOCAL, LocalStorage(config.LOCAL_STORAGE_PATH))

    if config.IPFS_API_URL:
        manager.add_backend(
            StorageBackend.IPFS,
            IpfsStorage(config.IPFS_API_URL, timeout=config.STORAGE_HTTP_TIMEOUT),
        )

    if config.github_configured:
        manager.add_backend(
            StorageBackend.GITHUB,
            GitHubStorage(
                owner=config.GITHUB_OWNER or "",
                repo=config.GITHUB_REPO or "",
                token=config.GITHUB_TOKEN or "",
                branch=config.GITHUB_BRANCH,
                timeout=config.STORAGE_HTTP_TIMEOUT,
            ),
        )

    # Fail at startup rather than on the first write
    manager.default_backend()
    return manager

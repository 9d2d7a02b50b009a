from .base import Storage, StorageBackend, StorageMetadata, StorageResult
from .github import GitHubStorage
from .ipfs import IpfsStorage
from .local import LocalStorage
from .manager import StorageManager, build_storage_manager

__all__ = [
    "Storage",
    "StorageBackend",
    "StorageMetadata",
    "StorageResult",
    "GitHubStorage",
    "IpfsStorage",
    "LocalStorage",
    "StorageManager",
    "build_storage_manager",
]

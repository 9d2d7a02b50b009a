"""
GitHub storage through the repository contents API.

Path-based: store() requires a `path` metadata key and commits the content
to that path; the returned identifier is the commit sha. The contents API
cannot read a file back by commit sha, so retrieve()/exists() address files
by repository path (recorded in StorageResult.metadata.extra["path"]).
Deletion is not implemented.
"""

import base64
from typing import Dict, List, Optional

import httpx
import structlog

from kpgb.core.errors import MissingMetadataError, NotFoundError, StorageError, UnsupportedOperationError
from kpgb.storage.base import (
    METADATA_MESSAGE,
    METADATA_PATH,
    Storage,
    StorageBackend,
    StorageMetadata,
    StorageResult,
    build_result,
)
from kpgb.storage.remote import build_client, check_response, transport_errors

logger = structlog.get_logger(__name__)

GITHUB_API_URL = "https://api.github.com"


class GitHubStorage(Storage):
    def __init__(
        self,
        owner: str,
        repo: str,
        token: str,
        branch: str = "main",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.owner = owner
        self.repo = repo
        self.branch = branch
        self._client = build_client(
            GITHUB_API_URL,
            timeout=timeout,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            transport=transport,
        )

    def _contents_url(self, path: str) -> str:
        return f"/repos/{self.owner}/{self.repo}/contents/{path.lstrip('/')}"

    def raw_url(self, path: str) -> str:
        return f"https://raw.githubusercontent.com/{self.owner}/{self.repo}/{self.branch}/{path.lstrip('/')}"

    async def _request(self, method: str, path: str, operation: str, **kwargs) -> httpx.Response:
        async with transport_errors("GitHub", operation):
            return await self._client.request(method, self._contents_url(path), **kwargs)

    async def _existing_sha(self, path: str) -> Optional[str]:
        """Blob sha of the file at path, needed by the API to overwrite it."""
        response = await self._request("GET", path, "lookup", params={"ref": self.branch})
        if response.status_code == 404:
            return None
        check_response(response, "GitHub", "lookup")
        body = response.json()
        return body.get("sha") if isinstance(body, dict) else None

    async def store(self, content: bytes, metadata: Dict[str, str]) -> StorageResult:
        path = metadata.get(METADATA_PATH)
        if not path:
            raise MissingMetadataError(METADATA_PATH, "GitHub")

        payload = {
            "message": metadata.get(METADATA_MESSAGE) or f"Add content to {path}",
            "content": base64.b64encode(content).decode("ascii"),
            "branch": self.branch,
        }
        existing_sha = await self._existing_sha(path)
        if existing_sha:
            payload["sha"] = existing_sha

        response = await self._request("PUT", path, "store", json=payload)
        check_response(response, "GitHub", "store")

        commit_sha = (response.json().get("commit") or {}).get("sha")
        if not commit_sha:
            raise StorageError("No commit sha in GitHub response")

        logger.info("Committed GitHub object", path=path, commit=commit_sha, size=len(content))
        return build_result(commit_sha, content, metadata, url=self.raw_url(path))

    async def retrieve(self, storage_id: str) -> bytes:
        response = await self._request(
            "GET",
            storage_id,
            "retrieve",
            params={"ref": self.branch},
            headers={"Accept": "application/vnd.github.raw+json"},
        )
        if response.status_code == 404:
            raise NotFoundError(f"GitHub path {storage_id!r} not found")
        check_response(response, "GitHub", "retrieve")
        return response.content

    async def exists(self, storage_id: str) -> bool:
        try:
            response = await self._request("HEAD", storage_id, "exists", params={"ref": self.branch})
        except StorageError:
            return False
        return response.is_success

    async def delete(self, storage_id: str) -> None:
        raise UnsupportedOperationError("GitHub storage deletion not implemented")

    async def list(self, prefix: Optional[str] = None) -> List[StorageMetadata]:
        response = await self._request("GET", prefix or "", "list", params={"ref": self.branch})
        if response.status_code == 404:
            return []
        check_response(response, "GitHub", "list")

        entries = response.json()
        if not isinstance(entries, list):
            # A file path returns a single object, not a directory listing
            entries = [entries]
        return [
            StorageMetadata(
                id=entry["path"],
                hash="",
                size=int(entry.get("size") or 0),
                extra={"sha": entry.get("sha", ""), "type": entry.get("type", "")},
            )
            for entry in entries
            if entry.get("type") == "file"
        ]

    def storage_type(self) -> str:
        return StorageBackend.GITHUB.value

    async def aclose(self) -> None:
        await self._client.aclose()

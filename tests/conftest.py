"""
Test fixtures for kpgb tests.

Every test gets its own SQLite file under tmp_path (with the FTS index) and
its own local blob directory, so tests never share state.
"""

import base64
import json
from datetime import datetime, timedelta, timezone
from typing import List

import httpx
import pytest
import pytest_asyncio

from kpgb.db import create_engine, init_db
from kpgb.models.post import BlogPost
from kpgb.services.blog import BlogManager
from kpgb.services.metadata_store import MetadataStore
from kpgb.storage.base import StorageBackend
from kpgb.storage.github import GitHubStorage
from kpgb.storage.local import LocalStorage
from kpgb.storage.manager import StorageManager

BASE_TIME = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def _make_post(
    title: str = "Hello World",
    content: str = "Hello",
    author: str = "alice",
    tags: List[str] | None = None,
    category: str | None = None,
    published: bool = False,
    minutes: int = 0,
) -> BlogPost:
    """Post with a deterministic created_at (BASE_TIME + minutes)."""
    created = BASE_TIME + timedelta(minutes=minutes)
    return BlogPost(
        title=title,
        content=content,
        author=author,
        tags=tags or [],
        category=category,
        published=published,
        created_at=created,
        updated_at=created,
    )


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'kpgb-test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def metadata_store(engine) -> MetadataStore:
    return MetadataStore(engine)


@pytest.fixture
def local_storage(tmp_path) -> LocalStorage:
    return LocalStorage(tmp_path / "blobs")


@pytest.fixture
def storage_manager(local_storage) -> StorageManager:
    manager = StorageManager(StorageBackend.LOCAL)
    manager.add_backend(StorageBackend.LOCAL, local_storage)
    return manager


@pytest.fixture
def blog(storage_manager, metadata_store) -> BlogManager:
    return BlogManager(storage_manager, metadata_store)


@pytest.fixture
def make_post():
    """Factory for posts with deterministic timestamps."""
    return _make_post


class FakeGitHub:
    """Contents API for a single repo, backed by a dict of path -> bytes."""

    def __init__(self):
        self.files = {}
        self.puts = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer secret"
        prefix = "/repos/owner/repo/contents/"
        path = request.url.path.removeprefix(prefix).rstrip("/")

        if request.method == "PUT":
            body = json.loads(request.content)
            self.puts.append(body)
            self.files[path] = base64.b64decode(body["content"])
            return httpx.Response(201, json={"content": {"path": path}, "commit": {"sha": f"commit-{len(self.puts)}"}})

        if request.method in ("GET", "HEAD"):
            if path in self.files:
                if "raw" in request.headers.get("Accept", ""):
                    return httpx.Response(200, content=self.files[path])
                return httpx.Response(200, json={"path": path, "sha": f"blob-{path}", "type": "file"})
            children = [p for p in self.files if p.startswith(f"{path}/") or not path]
            if children:
                return httpx.Response(
                    200,
                    json=[{"path": p, "sha": f"blob-{p}", "type": "file", "size": len(self.files[p])} for p in sorted(children)],
                )
            return httpx.Response(404, json={"message": "Not Found"})

        return httpx.Response(405)


@pytest.fixture
def fake_github():
    return FakeGitHub()


@pytest.fixture
def github(fake_github):
    return GitHubStorage("owner", "repo", "secret", transport=httpx.MockTransport(fake_github))


@pytest.fixture
def github_blog(github, metadata_store) -> BlogManager:
    """BlogManager whose default backend is the fake GitHub repo."""
    manager = StorageManager(StorageBackend.GITHUB)
    manager.add_backend(StorageBackend.GITHUB, github)
    return BlogManager(manager, metadata_store)

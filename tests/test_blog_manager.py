"""
Tests for BlogManager.

Tests cover:
1. create_post dedup idempotence (including the concurrent-insert race)
2. get_post falling back to the blob store
3. update_post in place
4. delete_post with mutable, immutable and failing backends
5. find_orphans on local and GitHub storage
6. The publish / list / related end-to-end scenario
"""

import json

import pytest
from structlog.testing import capture_logs

from kpgb.core.errors import (
    DuplicateContentError,
    NotFoundError,
    PostExistsError,
    StorageError,
    UnsupportedOperationError,
)
from kpgb.models.post import BlogPost
from kpgb.services.blog import BlogManager, blob_path
from kpgb.services.orphans import find_orphans
from kpgb.storage.base import StorageBackend
from kpgb.storage.manager import StorageManager


class TestCreatePost:
    @pytest.mark.asyncio
    async def test_writes_blob_and_row(self, blog, local_storage, make_post):
        post = make_post(title="Hello World", tags=["rust"])
        storage_id = await blog.create_post(post)

        assert storage_id == blob_path(post)
        assert post.storage_id == storage_id

        blob = json.loads(await local_storage.retrieve(storage_id))
        assert blob["id"] == post.id
        assert blob["content"] == "Hello"
        assert blob["content_hash"] == post.content_hash

        assert await blog.metadata.count_by_content_hash(post.content_hash) == 1

    @pytest.mark.asyncio
    async def test_duplicate_content_returns_existing_id(self, blog, local_storage, make_post):
        first = make_post(title="Hi", author="A", content="Hello")
        second = make_post(title="Hi Again", author="B", content="Hello")

        s1 = await blog.create_post(first)
        s2 = await blog.create_post(second)

        assert s1 == s2
        assert await blog.metadata.count_by_content_hash(first.content_hash) == 1
        # No second blob was written
        assert [m.id for m in await local_storage.list("posts")] == [s1]

    @pytest.mark.asyncio
    async def test_lost_insert_race_returns_winner(self, blog, local_storage, make_post, monkeypatch):
        winner = make_post(title="Winner", content="same body")
        s1 = await blog.create_post(winner)

        # The loser's dedup check ran before the winner's row was committed
        original = blog.metadata.get_post_by_content_hash
        calls = []

        async def stale_then_real(content_hash):
            calls.append(content_hash)
            if len(calls) == 1:
                return None
            return await original(content_hash)

        monkeypatch.setattr(blog.metadata, "get_post_by_content_hash", stale_then_real)

        loser = make_post(title="Loser", content="same body")
        s2 = await blog.create_post(loser)

        assert s2 == s1
        assert await blog.metadata.count_by_content_hash(winner.content_hash) == 1

        report = await find_orphans(blog)
        assert report.orphan_blobs == [blob_path(loser)]
        assert report.dangling_rows == []

    @pytest.mark.asyncio
    async def test_supplied_slug_keeps_blob_under_posts(self, blog, local_storage):
        post = BlogPost(title="T", slug="Héllo World!/../../escape", content="escape body", author="a")
        storage_id = await blog.create_post(post)

        assert storage_id == f"posts/hllo-worldescape-{post.id[:8]}.json"
        assert [m.id for m in await local_storage.list("posts")] == [storage_id]
        assert (await find_orphans(blog)).clean

    @pytest.mark.asyncio
    async def test_recreating_stored_post_is_rejected(self, blog, local_storage, make_post):
        post = make_post(content="v1")
        s1 = await blog.create_post(post)

        post.update_content("v2")
        with pytest.raises(PostExistsError) as exc_info:
            await blog.create_post(post)

        assert exc_info.value.existing_storage_id == s1
        # The stored snapshot was not overwritten
        assert json.loads(await local_storage.retrieve(s1))["content"] == "v1"
        assert (await blog.get_post(s1)).content == "v1"


class TestGetPost:
    @pytest.mark.asyncio
    async def test_from_metadata(self, blog, make_post):
        post = make_post(tags=["a"])
        storage_id = await blog.create_post(post)

        loaded = await blog.get_post(storage_id)
        assert loaded.id == post.id
        assert loaded.storage_id == storage_id
        assert loaded.tags == ["a"]

    @pytest.mark.asyncio
    async def test_falls_back_to_blob(self, blog, local_storage, make_post):
        post = make_post(title="Blob Only", content="only in storage")
        await local_storage.store(post.model_dump_json().encode(), {"filename": "posts/blob-only.json"})

        loaded = await blog.get_post("posts/blob-only.json")
        assert loaded.id == post.id
        assert loaded.title == "Blob Only"
        assert loaded.storage_id == "posts/blob-only.json"

    @pytest.mark.asyncio
    async def test_unknown(self, blog):
        with pytest.raises(NotFoundError):
            await blog.get_post("posts/nothing.json")


class TestUpdatePost:
    @pytest.mark.asyncio
    async def test_in_place(self, blog, local_storage, make_post):
        post = make_post(content="v1", tags=["a"])
        storage_id = await blog.create_post(post)
        before = post.updated_at

        post.content = "v2"
        post.tags = ["b"]
        returned = await blog.update_post(storage_id, post)

        assert returned == storage_id
        loaded = await blog.get_post(storage_id)
        assert loaded.content == "v2"
        assert loaded.tags == ["b"]
        assert loaded.updated_at > before

        # The blob keeps the original snapshot
        assert json.loads(await local_storage.retrieve(storage_id))["content"] == "v1"

    @pytest.mark.asyncio
    async def test_no_dedup_redirect(self, blog, make_post):
        s1 = await blog.create_post(make_post(content="taken"))
        other = make_post(content="free")
        s2 = await blog.create_post(other)

        other.content = "taken"
        with pytest.raises(DuplicateContentError):
            await blog.update_post(s2, other)
        assert (await blog.get_post(s2)).content == "free"
        assert (await blog.get_post(s1)).content == "taken"

    @pytest.mark.asyncio
    async def test_unknown(self, blog, make_post):
        with pytest.raises(NotFoundError):
            await blog.update_post("posts/nothing.json", make_post())


class ImmutableStorage:
    """Wraps a backend but refuses deletes, like IPFS."""

    def __init__(self, inner):
        self.inner = inner

    def __getattr__(self, name):
        return getattr(self.inner, name)

    async def delete(self, storage_id):
        raise UnsupportedOperationError("content is immutable")


class FailingDeleteStorage(ImmutableStorage):
    """Backend whose deletes fail with an unexpected error."""

    async def delete(self, storage_id):
        raise StorageError("backend unavailable")


class TestDeletePost:
    @pytest.mark.asyncio
    async def test_removes_row_and_blob(self, blog, local_storage, make_post):
        storage_id = await blog.create_post(make_post(tags=["x"]))

        await blog.delete_post(storage_id)

        assert await blog.metadata.get_post_by_storage_id(storage_id) is None
        assert await local_storage.exists(storage_id) is False
        with pytest.raises(NotFoundError):
            await blog.delete_post(storage_id)

    @pytest.mark.asyncio
    async def test_immutable_backend_keeps_blob(self, metadata_store, local_storage, make_post):
        manager = StorageManager(StorageBackend.LOCAL)
        manager.add_backend(StorageBackend.LOCAL, ImmutableStorage(local_storage))
        blog = BlogManager(manager, metadata_store)

        storage_id = await blog.create_post(make_post())
        await blog.delete_post(storage_id)

        assert await metadata_store.get_post_by_storage_id(storage_id) is None
        assert await local_storage.exists(storage_id) is True

    @pytest.mark.asyncio
    async def test_missing_blob_is_not_an_error(self, blog, local_storage, make_post):
        storage_id = await blog.create_post(make_post())
        await local_storage.delete(storage_id)

        await blog.delete_post(storage_id)
        assert await blog.metadata.get_post_by_storage_id(storage_id) is None

    @pytest.mark.asyncio
    async def test_backend_failure_is_logged(self, metadata_store, local_storage, make_post):
        manager = StorageManager(StorageBackend.LOCAL)
        manager.add_backend(StorageBackend.LOCAL, FailingDeleteStorage(local_storage))
        blog = BlogManager(manager, metadata_store)

        storage_id = await blog.create_post(make_post())
        with capture_logs() as logs:
            await blog.delete_post(storage_id)

        assert await metadata_store.get_post_by_storage_id(storage_id) is None
        failures = [e for e in logs if e.get("operation") == "delete_blob"]
        assert len(failures) == 1
        assert failures[0]["log_level"] == "warning"
        assert failures[0]["storage_id"] == storage_id
        assert failures[0]["error_type"] == "StorageError"


class TestFindOrphans:
    @pytest.mark.asyncio
    async def test_local_clean(self, blog, make_post):
        await blog.create_post(make_post())
        report = await find_orphans(blog)
        assert report.supported
        assert report.clean

    @pytest.mark.asyncio
    async def test_local_dangling_row(self, blog, local_storage, make_post):
        storage_id = await blog.create_post(make_post())
        await local_storage.delete(storage_id)

        report = await find_orphans(blog)
        assert report.dangling_rows == [storage_id]
        assert not report.clean

    @pytest.mark.asyncio
    async def test_github_is_skipped(self, github_blog, fake_github, make_post):
        post = make_post()
        storage_id = await github_blog.create_post(post)

        assert storage_id == "commit-1"
        assert blob_path(post) in fake_github.files

        report = await find_orphans(github_blog)
        assert report.backend == "github"
        assert report.supported is False
        assert report.dangling_rows == []
        assert report.orphan_blobs == []


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_publish_list_related(self, blog, make_post):
        s1 = await blog.create_post(make_post(title="Hi", author="A", content="Hello", minutes=1))
        s1_again = await blog.create_post(make_post(title="Hi Again", author="B", content="Hello", minutes=2))
        assert s1_again == s1

        assert await blog.list_posts(published_only=True) == []

        await blog.publish_post(s1)
        assert [p.storage_id for p in await blog.list_posts(published_only=True)] == [s1]
        assert [p.storage_id for p in await blog.list_posts(published_only=False)] == [s1]

        third = make_post(title="Unrelated", content="Something else", tags=["misc"], category="other", minutes=3)
        s3 = await blog.create_post(third)
        await blog.publish_post(s3)

        related = await blog.get_related_posts(third.id, third.tags, third.category, limit=5)
        assert [p.storage_id for p in related] == [s1]

    @pytest.mark.asyncio
    async def test_unpublish_and_stats(self, blog, make_post):
        storage_id = await blog.create_post(make_post(tags=["t"], category="c"))
        await blog.publish_post(storage_id)
        assert [(t.name, t.post_count) for t in await blog.get_all_tags()] == [("t", 1)]

        await blog.unpublish_post(storage_id)
        assert await blog.get_all_tags() == []

        stats = await blog.get_blog_stats()
        assert stats.total_posts == 1
        assert stats.published_posts == 0
        assert stats.categories == ["c"]

    @pytest.mark.asyncio
    async def test_publish_unknown(self, blog):
        with pytest.raises(NotFoundError):
            await blog.publish_post("posts/nothing.json")

    @pytest.mark.asyncio
    async def test_search(self, blog, make_post):
        storage_id = await blog.create_post(make_post(title="Pinning guide", content="How to pin content on IPFS"))

        assert [p.storage_id for p in await blog.search_posts("ipfs pin")] == [storage_id]
        assert await blog.search_posts("") == []
        assert await blog.search_posts("ipfs", published_only=True) == []

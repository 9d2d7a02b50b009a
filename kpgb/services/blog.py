"""
Blog manager: deduplicated writes across blob storage and the metadata store.

A post's JSON snapshot goes to the default storage backend; its metadata row
(and tags) goes to the metadata store. Content is deduplicated by SHA-256:
creating a post whose content already exists returns the existing
storage_id without writing anything.

The two stores are not updated atomically. A failed metadata insert after a
successful blob write leaves an orphan blob, which is logged and reported
later by scripts/find_orphans.py rather than compensated inline.
"""

from typing import Dict, List, Optional

import structlog
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError

from kpgb.core.errors import (
    NotFoundError,
    PostExistsError,
    StorageError,
    UnsupportedOperationError,
    error_boundary,
)
from kpgb.models.post import BlogPost, BlogStats, TagCount
from kpgb.services.metadata_store import MetadataStore
from kpgb.storage.base import (
    CONTENT_TYPE_JSON,
    METADATA_CONTENT_TYPE,
    METADATA_FILENAME,
    METADATA_MESSAGE,
    METADATA_PATH,
)
from kpgb.storage.manager import StorageManager

logger = structlog.get_logger(__name__)


def blob_path(post: BlogPost) -> str:
    """Repository-style path for the post snapshot, e.g. posts/hello-world-1a2b3c4d.json"""
    return f"posts/{post.slug}-{post.id[:8]}.json"


def blob_metadata(post: BlogPost) -> Dict[str, str]:
    path = blob_path(post)
    return {
        METADATA_CONTENT_TYPE: CONTENT_TYPE_JSON,
        METADATA_FILENAME: path,
        METADATA_PATH: path,
        METADATA_MESSAGE: f"Add post: {post.title}",
        "post_id": post.id,
        "slug": post.slug,
    }


def serialize_post(post: BlogPost) -> bytes:
    return post.model_dump_json(indent=2).encode("utf-8")


def deserialize_post(raw: bytes) -> BlogPost:
    return BlogPost.model_validate_json(raw)


class BlogManager:
    def __init__(self, storage: StorageManager, metadata: MetadataStore):
        self.storage = storage
        self.metadata = metadata

    async def create_post(self, post: BlogPost) -> str:
        """
        Store a post and return its storage_id.

        Idempotent on content: if any post already has this content hash its
        storage_id is returned and nothing is written. A post whose id is
        already stored raises PostExistsError before anything is written;
        edits go through update_post.
        """
        content_hash = post.content_hash

        existing = await self.metadata.get_post_by_content_hash(content_hash)
        if existing is not None:
            logger.info("Duplicate content, reusing post", storage_id=existing, content_hash=content_hash[:12])
            return existing

        # An edited copy of a stored post would overwrite that post's blob path
        await self._ensure_new(post)

        result = await self.storage.store(serialize_post(post), blob_metadata(post))

        try:
            await self.metadata.insert_post(post, result.id)
        except IntegrityError:
            # Lost a race against a concurrent create of the same content
            winner = await self.metadata.get_post_by_content_hash(content_hash)
            if winner is None:
                await self._ensure_new(post)
                raise
            logger.warning(
                "Concurrent duplicate create, blob orphaned",
                storage_id=winner,
                orphan_storage_id=result.id,
                content_hash=content_hash[:12],
            )
            return winner

        post.storage_id = result.id
        logger.info("Post created", storage_id=result.id, slug=post.slug, post_id=post.id)
        return result.id

    async def _ensure_new(self, post: BlogPost) -> None:
        owner = await self.metadata.get_storage_id_by_post_id(post.id)
        if owner is not None:
            raise PostExistsError(post.id, owner)

    async def get_post(self, storage_id: str) -> BlogPost:
        """Metadata store first, then the blob in the default backend."""
        post = await self.metadata.get_post_by_storage_id(storage_id)
        if post is not None:
            return post

        try:
            raw = await self.storage.default_backend().retrieve(storage_id)
        except NotFoundError as e:
            raise NotFoundError(f"Post {storage_id} not found") from e

        try:
            post = deserialize_post(raw)
        except ValidationError as e:
            raise StorageError(f"Object {storage_id} is not a blog post") from e

        post.storage_id = storage_id
        return post

    async def update_post(self, storage_id: str, post: BlogPost) -> str:
        """
        Update the metadata of an existing post in place.

        storage_id does not change and the original blob is left as a
        historical snapshot. Raises NotFoundError for an unknown id and
        DuplicateContentError if another post already has the new content.
        """
        post.touch()
        await self.metadata.update_post(storage_id, post)
        post.storage_id = storage_id
        logger.info("Post updated", storage_id=storage_id)
        return storage_id

    async def delete_post(self, storage_id: str) -> None:
        """Remove the post's metadata, then try to remove the blob."""
        await self.metadata.delete_post(storage_id)

        backend = self.storage.default_backend()
        with error_boundary("delete_blob", storage_id=storage_id, backend=backend.storage_type()):
            try:
                await backend.delete(storage_id)
            except (UnsupportedOperationError, NotFoundError) as e:
                logger.info(
                    "Blob left in place",
                    storage_id=storage_id,
                    backend=backend.storage_type(),
                    reason=str(e),
                )

        logger.info("Post deleted", storage_id=storage_id)

    async def publish_post(self, storage_id: str) -> None:
        await self.metadata.update_post_published(storage_id, True)

    async def unpublish_post(self, storage_id: str) -> None:
        await self.metadata.update_post_published(storage_id, False)

    async def list_posts(self, published_only: bool = False) -> List[BlogPost]:
        return await self.metadata.list_posts(published_only)

    async def search_posts(self, query: str, published_only: bool = False) -> List[BlogPost]:
        if not query.strip():
            return []
        return await self.metadata.search_posts(query, published_only=published_only)

    async def get_all_tags(self) -> List[TagCount]:
        return await self.metadata.get_all_tags()

    async def get_posts_by_tag(self, tag: str, published_only: bool = False) -> List[BlogPost]:
        return await self.metadata.get_posts_by_tag(tag, published_only)

    async def get_related_posts(
        self,
        post_id: str,
        tags: List[str],
        category: Optional[str],
        limit: int = 5,
    ) -> List[BlogPost]:
        return await self.metadata.get_related_posts(post_id, tags, category, limit)

    async def get_blog_stats(self) -> BlogStats:
        return await self.metadata.get_stats()

"""
Metadata Store

Relational index of posts, tags and the post/tag links, plus the full-text
index used for search. Blob content lives in a storage backend; this store
holds everything needed to list, filter and search without touching it.

Every multi-statement mutation runs inside one transaction, so a post is
never left with half of its tag links.

Usage:
    from kpgb.db import create_engine
    from kpgb.services.metadata_store import MetadataStore

    store = MetadataStore(create_engine("sqlite+aiosqlite:///./kpgb.db"))
    await store.init_schema()

    await store.insert_post(post, storage_id="Qm...")
    post = await store.get_post_by_storage_id("Qm...")
    hits = await store.search_posts("distributed storage")
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import delete, func, or_, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from kpgb.core.db_utils import translate_db_errors
from kpgb.core.errors import DuplicateContentError, NotFoundError
from kpgb.core.typing import col, ensure_utc, utc_now
from kpgb.db import init_db, is_sqlite
from kpgb.models.post import BlogPost, BlogStats, PostRecord, PostTagLink, TagCount, TagRecord, normalize_tags

logger = logging.getLogger(__name__)

# Weights for related-post scoring
SHARED_TAG_WEIGHT = 2
SAME_CATEGORY_WEIGHT = 1


def build_fts_query(query: str) -> str:
    """
    Turn free text into an FTS5 MATCH expression.

    Each whitespace-separated term is quoted, so operators and punctuation in
    user input are matched literally instead of being parsed as FTS syntax.
    Terms are AND-ed; terms without any letter or digit are dropped.
    """
    terms = [term.replace('"', '""') for term in query.split() if any(ch.isalnum() for ch in term)]
    return " AND ".join(f'"{term}"' for term in terms)


class MetadataStore:
    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    def _session(self) -> AsyncSession:
        return AsyncSession(self.engine, expire_on_commit=False)

    @translate_db_errors
    async def init_schema(self) -> None:
        await init_db(self.engine)

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    def _tag_upsert(self, name: str):
        """INSERT ... ON CONFLICT DO NOTHING where the dialect supports it."""
        dialect = self.engine.dialect.name
        if dialect == "sqlite":
            return sqlite_insert(TagRecord).values(name=name).on_conflict_do_nothing(index_elements=["name"])
        if dialect == "postgresql":
            return pg_insert(TagRecord).values(name=name).on_conflict_do_nothing(index_elements=["name"])
        return None

    async def _get_or_create_tag(self, session: AsyncSession, name: str) -> int:
        stmt = self._tag_upsert(name)
        if stmt is not None:
            await session.execute(stmt)

        result = await session.exec(select(TagRecord).where(col(TagRecord.name) == name))
        tag = result.first()
        if tag is None:
            tag = TagRecord(name=name)
            session.add(tag)
            await session.flush()
        assert tag.id is not None
        return tag.id

    async def _link_tags(self, session: AsyncSession, post_id: str, tags: Iterable[str]) -> None:
        for name in normalize_tags(tags):
            tag_id = await self._get_or_create_tag(session, name)
            session.add(PostTagLink(post_id=post_id, tag_id=tag_id))
        await session.flush()

    async def _tags_for(self, session: AsyncSession, post_ids: Sequence[str]) -> Dict[str, List[str]]:
        """Tag names per post id, alphabetical."""
        tags: Dict[str, List[str]] = {post_id: [] for post_id in post_ids}
        if not post_ids:
            return tags

        stmt = (
            select(PostTagLink.post_id, TagRecord.name)
            .join(TagRecord, col(TagRecord.id) == col(PostTagLink.tag_id))
            .where(col(PostTagLink.post_id).in_(list(post_ids)))
            .order_by(col(TagRecord.name))
        )
        result = await session.exec(stmt)
        for post_id, name in result.all():
            tags[post_id].append(name)
        return tags

    async def _to_posts(self, session: AsyncSession, rows: Sequence[PostRecord]) -> List[BlogPost]:
        tags = await self._tags_for(session, [row.id for row in rows])
        return [row.to_post(tags[row.id]) for row in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @translate_db_errors
    async def insert_post(self, post: BlogPost, storage_id: str) -> None:
        """
        Insert the post row and its tag links in one transaction.

        Raises sqlalchemy.exc.IntegrityError when another row already holds
        the same content_hash or storage_id.
        """
        async with self._session() as session:
            async with session.begin():
                session.add(PostRecord.from_post(post, storage_id))
                await session.flush()
                await self._link_tags(session, post.id, post.tags)

        logger.info(f"Inserted post id={post.id} storage_id={storage_id} tags={len(post.tags)}")

    @translate_db_errors
    async def update_post(self, storage_id: str, post: BlogPost) -> None:
        """
        Overwrite the row addressed by storage_id with the post's fields.

        storage_id itself never changes. Tags are relinked in the same
        transaction. Raises NotFoundError for an unknown storage_id and
        DuplicateContentError when another post already has this content.
        """
        new_hash = post.content_hash
        async with self._session() as session:
            async with session.begin():
                result = await session.exec(select(PostRecord).where(col(PostRecord.storage_id) == storage_id))
                row = result.first()
                if row is None:
                    raise NotFoundError(f"Post {storage_id} not found")

                if new_hash != row.content_hash:
                    owner = await session.exec(
                        select(PostRecord.storage_id).where(
                            col(PostRecord.content_hash) == new_hash,
                            col(PostRecord.id) != row.id,
                        )
                    )
                    existing = owner.first()
                    if existing is not None:
                        raise DuplicateContentError(new_hash, existing)

                row.title = post.title
                row.slug = post.slug
                row.content = post.content
                row.excerpt = post.excerpt
                row.author = post.author
                row.category = post.category
                row.content_hash = new_hash
                row.updated_at = post.updated_at
                session.add(row)

                await session.execute(delete(PostTagLink).where(col(PostTagLink.post_id) == row.id))
                await self._link_tags(session, row.id, post.tags)

        logger.info(f"Updated post storage_id={storage_id}")

    @translate_db_errors
    async def update_post_published(self, storage_id: str, published: bool) -> None:
        async with self._session() as session:
            async with session.begin():
                result = await session.execute(
                    update(PostRecord)
                    .where(col(PostRecord.storage_id) == storage_id)
                    .values(published=published, updated_at=utc_now())
                )
                if result.rowcount == 0:
                    raise NotFoundError(f"Post {storage_id} not found")

        logger.info(f"Set published={published} for storage_id={storage_id}")

    @translate_db_errors
    async def delete_post(self, storage_id: str) -> None:
        """Delete the row and its tag links. Raises NotFoundError if absent."""
        async with self._session() as session:
            async with session.begin():
                result = await session.exec(select(PostRecord.id).where(col(PostRecord.storage_id) == storage_id))
                post_id = result.first()
                if post_id is None:
                    raise NotFoundError(f"Post {storage_id} not found")

                await session.execute(delete(PostTagLink).where(col(PostTagLink.post_id) == post_id))
                await session.execute(delete(PostRecord).where(col(PostRecord.id) == post_id))

        logger.info(f"Deleted post storage_id={storage_id}")

    # ------------------------------------------------------------------
    # Point lookups
    # ------------------------------------------------------------------

    @translate_db_errors
    async def get_post_by_storage_id(self, storage_id: str) -> Optional[BlogPost]:
        async with self._session() as session:
            result = await session.exec(select(PostRecord).where(col(PostRecord.storage_id) == storage_id))
            row = result.first()
            if row is None:
                return None
            return (await self._to_posts(session, [row]))[0]

    @translate_db_errors
    async def get_post_by_content_hash(self, content_hash: str) -> Optional[str]:
        """storage_id of the post with this content, if any."""
        async with self._session() as session:
            result = await session.exec(
                select(PostRecord.storage_id).where(col(PostRecord.content_hash) == content_hash)
            )
            return result.first()

    @translate_db_errors
    async def get_storage_id_by_post_id(self, post_id: str) -> Optional[str]:
        async with self._session() as session:
            result = await session.exec(select(PostRecord.storage_id).where(col(PostRecord.id) == post_id))
            return result.first()

    @translate_db_errors
    async def count_by_content_hash(self, content_hash: str) -> int:
        async with self._session() as session:
            result = await session.exec(
                select(func.count()).select_from(PostRecord).where(col(PostRecord.content_hash) == content_hash)
            )
            return int(result.one())

    @translate_db_errors
    async def list_storage_ids(self) -> List[str]:
        async with self._session() as session:
            result = await session.exec(select(PostRecord.storage_id).order_by(col(PostRecord.storage_id)))
            return list(result.all())

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @translate_db_errors
    async def list_posts(self, published_only: bool = False) -> List[BlogPost]:
        """Posts newest first."""
        stmt = select(PostRecord)
        if published_only:
            stmt = stmt.where(col(PostRecord.published).is_(True))
        stmt = stmt.order_by(col(PostRecord.created_at).desc())

        async with self._session() as session:
            result = await session.exec(stmt)
            return await self._to_posts(session, result.all())

    @translate_db_errors
    async def search_posts(self, query: str, published_only: bool = False, limit: int = 50) -> List[BlogPost]:
        """
        Full-text search over title, content and excerpt.

        Ranked by FTS5 bm25 on SQLite. Other databases fall back to a
        case-insensitive substring match on every term, newest first.
        """
        if not query.strip():
            return []

        async with self._session() as session:
            if is_sqlite(self.engine):
                rows = await self._search_fts(session, query, published_only, limit)
            else:
                rows = await self._search_like(session, query, published_only, limit)
            return await self._to_posts(session, rows)

    async def _search_fts(
        self, session: AsyncSession, query: str, published_only: bool, limit: int
    ) -> List[PostRecord]:
        sql = """
            SELECT p.id
            FROM posts_fts
            JOIN posts p ON p.rowid = posts_fts.rowid
            WHERE posts_fts MATCH :query
        """
        if published_only:
            sql += " AND p.published = 1"
        sql += " ORDER BY posts_fts.rank LIMIT :limit"

        match = build_fts_query(query)
        if not match:
            return []

        result = await session.execute(text(sql), {"query": match, "limit": limit})
        ranked_ids = [row[0] for row in result.all()]
        if not ranked_ids:
            return []

        rows = await session.exec(select(PostRecord).where(col(PostRecord.id).in_(ranked_ids)))
        by_id = {row.id: row for row in rows.all()}
        return [by_id[post_id] for post_id in ranked_ids if post_id in by_id]

    async def _search_like(
        self, session: AsyncSession, query: str, published_only: bool, limit: int
    ) -> List[PostRecord]:
        stmt = select(PostRecord)
        for term in query.split():
            pattern = f"%{term}%"
            stmt = stmt.where(
                or_(
                    col(PostRecord.title).ilike(pattern),
                    col(PostRecord.content).ilike(pattern),
                    col(PostRecord.excerpt).ilike(pattern),
                )
            )
        if published_only:
            stmt = stmt.where(col(PostRecord.published).is_(True))
        stmt = stmt.order_by(col(PostRecord.created_at).desc()).limit(limit)

        result = await session.exec(stmt)
        return list(result.all())

    @translate_db_errors
    async def get_all_tags(self) -> List[TagCount]:
        """Tags with their published post count, most used first."""
        post_count = func.count(col(PostTagLink.post_id)).label("post_count")
        stmt = (
            select(TagRecord.name, post_count)
            .join(PostTagLink, col(PostTagLink.tag_id) == col(TagRecord.id))
            .join(PostRecord, col(PostRecord.id) == col(PostTagLink.post_id))
            .where(col(PostRecord.published).is_(True))
            .group_by(col(TagRecord.id), col(TagRecord.name))
            .order_by(post_count.desc(), col(TagRecord.name).asc())
        )
        async with self._session() as session:
            result = await session.exec(stmt)
            return [TagCount(name=name, post_count=count) for name, count in result.all()]

    @translate_db_errors
    async def get_posts_by_tag(self, tag: str, published_only: bool = False) -> List[BlogPost]:
        stmt = (
            select(PostRecord)
            .join(PostTagLink, col(PostTagLink.post_id) == col(PostRecord.id))
            .join(TagRecord, col(TagRecord.id) == col(PostTagLink.tag_id))
            .where(col(TagRecord.name) == tag)
        )
        if published_only:
            stmt = stmt.where(col(PostRecord.published).is_(True))
        stmt = stmt.order_by(col(PostRecord.created_at).desc())

        async with self._session() as session:
            result = await session.exec(stmt)
            return await self._to_posts(session, result.all())

    @translate_db_errors
    async def get_related_posts(
        self,
        post_id: str,
        tags: Iterable[str],
        category: Optional[str],
        limit: int = 5,
    ) -> List[BlogPost]:
        """
        Published posts related to the given tags and category.

        Score is 2 per shared tag plus 1 for the same category. Positive
        scores come first (highest score, then newest); the rest of the slots
        are filled with the newest remaining published posts. post_id itself
        is never returned.
        """
        if limit <= 0:
            return []

        wanted = set(normalize_tags(tags))
        stmt = (
            select(PostRecord)
            .where(col(PostRecord.published).is_(True), col(PostRecord.id) != post_id)
            .order_by(col(PostRecord.created_at).desc())
        )

        async with self._session() as session:
            result = await session.exec(stmt)
            candidates = await self._to_posts(session, result.all())

        scored = []
        for candidate in candidates:
            score = SHARED_TAG_WEIGHT * len(wanted.intersection(candidate.tags))
            if category and candidate.category == category:
                score += SAME_CATEGORY_WEIGHT
            scored.append((score, candidate))

        # Candidates are newest first and sort() is stable, so ties stay newest first
        matched = [post for score, post in sorted(scored, key=lambda item: -item[0]) if score > 0]
        padding = [post for score, post in scored if score == 0]
        return (matched + padding)[:limit]

    @translate_db_errors
    async def get_stats(self) -> BlogStats:
        async with self._session() as session:
            total = (await session.exec(select(func.count()).select_from(PostRecord))).one()
            published = (
                await session.exec(
                    select(func.count()).select_from(PostRecord).where(col(PostRecord.published).is_(True))
                )
            ).one()
            categories = (
                await session.exec(
                    select(PostRecord.category)
                    .where(col(PostRecord.category).is_not(None))
                    .distinct()
                    .order_by(col(PostRecord.category))
                )
            ).all()
            authors = (
                await session.exec(select(PostRecord.author).distinct().order_by(col(PostRecord.author)))
            ).all()
            tags = (
                await session.exec(
                    select(TagRecord.name)
                    .join(PostTagLink, col(PostTagLink.tag_id) == col(TagRecord.id))
                    .distinct()
                    .order_by(col(TagRecord.name))
                )
            ).all()
            last_updated = (await session.exec(select(func.max(PostRecord.updated_at)))).one()

        return BlogStats(
            total_posts=int(total),
            published_posts=int(published),
            categories=[c for c in categories if c],
            tags=list(tags),
            authors=list(authors),
            last_updated=ensure_utc(last_updated),
        )

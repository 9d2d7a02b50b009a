"""
Blog Post Models

`BlogPost` is the in-memory post that flows through the blog manager and is
serialized as JSON into the storage backend. `PostRecord`, `TagRecord` and
`PostTagLink` are the relational rows of the metadata store.

Usage:
    from kpgb.models.post import BlogPost

    post = BlogPost(title="Hello World", content="# Hi", author="alice")
    post.slug          # "hello-world"
    post.content_hash  # sha256 hex of the content
"""

import hashlib
import re
import time
import uuid
from datetime import datetime
from typing import Iterable, List, Optional

from pydantic import BaseModel, Field as PydanticField, ValidationInfo, computed_field, field_validator
from sqlalchemy import Index, Text
from sqlmodel import Column, Field, SQLModel

from kpgb.core.typing import ensure_utc, utc_now

_SLUG_SEPARATORS = re.compile(r"-+")


def _slugify(text: str) -> str:
    chars = []
    for ch in text.lower():
        if ch.isascii() and ch.isalnum():
            chars.append(ch)
        elif ch.isspace() or ch in "-_":
            chars.append("-")
    return _SLUG_SEPARATORS.sub("-", "".join(chars)).strip("-")


def generate_slug(title: str) -> str:
    """
    Derive a URL-safe ASCII slug from a title.

    Whitespace, '-' and '_' become '-', other non-alphanumeric or non-ASCII
    characters are dropped. A title with nothing usable (e.g. all CJK) gets
    a timestamp placeholder, so the result is never empty.
    """
    slug = _slugify(title)
    if not slug:
        return f"post-{int(time.time())}"
    return slug


def calculate_hash(content: str) -> str:
    """SHA-256 hex digest of the UTF-8 encoded content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def normalize_tags(tags: Iterable[str]) -> List[str]:
    """Strip tags, drop empty ones and collapse duplicates (first occurrence wins)."""
    seen = set()
    result = []
    for tag in tags:
        name = tag.strip()
        if name and name not in seen:
            seen.add(name)
            result.append(name)
    return result


class BlogPost(BaseModel):
    """
    A blog post.

    Attributes:
        id: Opaque UUID, generated once and never changed
        title: Human title
        slug: URL-safe slug (derived from title when omitted)
        content: Markdown body
        excerpt: Optional short summary
        author: Author name
        created_at / updated_at: UTC timestamps
        published: Draft (False) until published
        tags: Tag names, normalized
        category: Optional category
        storage_id: Identifier assigned by the storage backend
        content_hash: SHA-256 of content, always derived from it
    """

    id: str = PydanticField(default_factory=lambda: str(uuid.uuid4()))
    title: str
    slug: str = PydanticField(default="", validate_default=True)
    content: str
    excerpt: Optional[str] = None
    author: str
    created_at: datetime = PydanticField(default_factory=utc_now)
    updated_at: datetime = PydanticField(default_factory=utc_now)
    published: bool = False
    tags: List[str] = PydanticField(default_factory=list)
    category: Optional[str] = None
    storage_id: Optional[str] = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def content_hash(self) -> str:
        return calculate_hash(self.content)

    @field_validator("slug")
    @classmethod
    def _default_slug(cls, value: str, info: ValidationInfo) -> str:
        # Supplied slugs follow the same rules; nothing usable falls back to the title
        return _slugify(value) or generate_slug(info.data.get("title", ""))

    @field_validator("tags")
    @classmethod
    def _normalize_tags(cls, value: List[str]) -> List[str]:
        return normalize_tags(value)

    @field_validator("created_at", "updated_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)  # type: ignore[return-value]

    def touch(self) -> None:
        self.updated_at = utc_now()

    def update_content(self, new_content: str) -> None:
        self.content = new_content
        self.touch()

    def set_tags(self, tags: Iterable[str]) -> None:
        self.tags = normalize_tags(tags)
        self.touch()

    def rename(self, title: str, regenerate_slug: bool = False) -> None:
        self.title = title
        if regenerate_slug:
            self.slug = generate_slug(title)
        self.touch()


class TagCount(BaseModel):
    name: str
    post_count: int


class BlogStats(BaseModel):
    total_posts: int
    published_posts: int
    categories: List[str]
    tags: List[str]
    authors: List[str]
    last_updated: Optional[datetime] = None


class PostTagLink(SQLModel, table=True):
    """Many-to-many link between posts and tags."""

    __tablename__ = "post_tags"

    post_id: str = Field(foreign_key="posts.id", primary_key=True, max_length=36)
    tag_id: int = Field(foreign_key="tags.id", primary_key=True)


class TagRecord(SQLModel, table=True):
    __tablename__ = "tags"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(unique=True, index=True, max_length=100)


class PostRecord(SQLModel, table=True):
    """
    Post metadata row.

    content_hash is unique: a second row with identical content is rejected
    by the database, which is how concurrent duplicate creates are detected.
    """

    __tablename__ = "posts"

    id: str = Field(primary_key=True, max_length=36)
    storage_id: str = Field(unique=True, index=True, max_length=200)
    title: str = Field(max_length=500)
    slug: str = Field(index=True, max_length=200)
    content: str = Field(sa_column=Column(Text, nullable=False))
    excerpt: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    author: str = Field(max_length=100)
    content_hash: str = Field(unique=True, index=True, max_length=64)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    published: bool = Field(default=False)
    category: Optional[str] = Field(default=None, max_length=100)

    __table_args__ = (
        # list_posts(published_only) ordered by recency
        Index("ix_posts_published_created", "published", "created_at"),
    )

    @classmethod
    def from_post(cls, post: BlogPost, storage_id: str) -> "PostRecord":
        return cls(
            id=post.id,
            storage_id=storage_id,
            title=post.title,
            slug=post.slug,
            content=post.content,
            excerpt=post.excerpt,
            author=post.author,
            content_hash=post.content_hash,
            created_at=post.created_at,
            updated_at=post.updated_at,
            published=post.published,
            category=post.category,
        )

    def to_post(self, tags: Optional[List[str]] = None) -> BlogPost:
        return BlogPost(
            id=self.id,
            title=self.title,
            slug=self.slug,
            content=self.content,
            excerpt=self.excerpt,
            author=self.author,
            created_at=self.created_at,
            updated_at=self.updated_at,
            published=self.published,
            tags=tags or [],
            category=self.category,
            storage_id=self.storage_id,
        )


__all__ = [
    "BlogPost",
    "BlogStats",
    "PostRecord",
    "PostTagLink",
    "TagCount",
    "TagRecord",
    "calculate_hash",
    "generate_slug",
    "normalize_tags",
]

from typing import Generic, List, Optional, TypeVar
from datetime import datetime

from pydantic import BaseModel, Field

from kpgb.core.text import calculate_reading_time
from kpgb.models.post import BlogPost

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Envelope for every JSON API response."""
    success: bool
    data: Optional[T] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: T) -> "ApiResponse[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "ApiResponse[T]":
        return cls(success=False, error=error)


class PostSummary(BaseModel):
    id: str
    storage_id: Optional[str] = None
    title: str
    slug: str
    author: str
    created_at: datetime
    published: bool
    tags: List[str] = []
    category: Optional[str] = None
    excerpt: Optional[str] = None
    reading_time: int = 1  # minutes

    @classmethod
    def from_post(cls, post: BlogPost) -> "PostSummary":
        return cls(
            id=post.id,
            storage_id=post.storage_id,
            title=post.title,
            slug=post.slug,
            author=post.author,
            created_at=post.created_at,
            published=post.published,
            tags=post.tags,
            category=post.category,
            excerpt=post.excerpt,
            reading_time=calculate_reading_time(post.content),
        )


class PostDetail(PostSummary):
    content: str
    content_hash: str
    updated_at: datetime

    @classmethod
    def from_post(cls, post: BlogPost) -> "PostDetail":
        summary = PostSummary.from_post(post)
        return cls(
            **summary.model_dump(),
            content=post.content,
            content_hash=post.content_hash,
            updated_at=post.updated_at,
        )


class TagInfo(BaseModel):
    name: str
    post_count: int


class SearchRequest(BaseModel):
    query: str = Field(max_length=500)

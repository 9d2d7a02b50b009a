"""Tag endpoints and blog statistics."""
from typing import Any, List

from fastapi import APIRouter, Depends

from kpgb.api.deps import get_blog_manager
from kpgb.models.post import BlogStats
from kpgb.schemas import ApiResponse, PostSummary, TagInfo
from kpgb.services.blog import BlogManager

router = APIRouter()


@router.get("/tags", response_model=ApiResponse[List[TagInfo]])
async def list_tags(blog: BlogManager = Depends(get_blog_manager)) -> Any:
    """Tags used by published posts, most used first."""
    tags = await blog.get_all_tags()
    return ApiResponse.ok([TagInfo(name=t.name, post_count=t.post_count) for t in tags])


@router.get("/tags/{tag}", response_model=ApiResponse[List[PostSummary]])
async def get_posts_by_tag(tag: str, blog: BlogManager = Depends(get_blog_manager)) -> Any:
    posts = await blog.get_posts_by_tag(tag, published_only=True)
    return ApiResponse.ok([PostSummary.from_post(post) for post in posts])


@router.get("/stats", response_model=ApiResponse[BlogStats])
async def get_stats(blog: BlogManager = Depends(get_blog_manager)) -> Any:
    return ApiResponse.ok(await blog.get_blog_stats())

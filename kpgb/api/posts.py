"""Post endpoints: listing, detail, related posts and search."""
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query

from kpgb.api.deps import get_blog_manager
from kpgb.schemas import ApiResponse, PostDetail, PostSummary, SearchRequest
from kpgb.services.blog import BlogManager

router = APIRouter()


@router.get("/posts", response_model=ApiResponse[List[PostSummary]])
async def list_posts(
    tag: Optional[str] = Query(default=None, max_length=100),
    blog: BlogManager = Depends(get_blog_manager),
) -> Any:
    """
    Published posts, newest first.
    Pass ?tag= to only return posts carrying that tag.
    """
    if tag:
        posts = await blog.get_posts_by_tag(tag, published_only=True)
    else:
        posts = await blog.list_posts(published_only=True)
    return ApiResponse.ok([PostSummary.from_post(post) for post in posts])


# Storage ids may contain slashes (local and GitHub paths), so both routes use
# the path converter and /related must be registered before the detail route.
@router.get("/posts/{storage_id:path}/related", response_model=ApiResponse[List[PostSummary]])
async def get_related_posts(
    storage_id: str,
    limit: int = Query(default=5, ge=0, le=50),
    blog: BlogManager = Depends(get_blog_manager),
) -> Any:
    post = await blog.get_post(storage_id)
    related = await blog.get_related_posts(post.id, post.tags, post.category, limit)
    return ApiResponse.ok([PostSummary.from_post(p) for p in related])


@router.get("/posts/{storage_id:path}", response_model=ApiResponse[PostDetail])
async def get_post(
    storage_id: str,
    blog: BlogManager = Depends(get_blog_manager),
) -> Any:
    post = await blog.get_post(storage_id)
    return ApiResponse.ok(PostDetail.from_post(post))


@router.post("/search", response_model=ApiResponse[List[PostSummary]])
async def search_posts(
    request: SearchRequest,
    blog: BlogManager = Depends(get_blog_manager),
) -> Any:
    posts = await blog.search_posts(request.query, published_only=True)
    return ApiResponse.ok([PostSummary.from_post(post) for post in posts])

from .post import BlogPost, BlogStats, PostRecord, PostTagLink, TagCount, TagRecord

__all__ = [
    "BlogPost",
    "BlogStats",
    "PostRecord",
    "PostTagLink",
    "TagCount",
    "TagRecord",
]

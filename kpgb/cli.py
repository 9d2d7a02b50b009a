"""
kpgb command line.

Usage:
    kpgb new --title "Hello" --author alice --content post.md
    kpgb list --published
    kpgb publish <storage_id>
    kpgb read <storage_id>
    kpgb search "ipfs pinning"
    kpgb tags
    kpgb delete <storage_id>
    kpgb test-storage --backend ipfs
    kpgb init-db
    kpgb serve --port 3000
"""

import argparse
import asyncio
import sys
from typing import Awaitable, Callable, List, Optional

from kpgb.core.config import Settings, get_settings
from kpgb.core.errors import KpgbError
from kpgb.core.frontmatter import parse_frontmatter
from kpgb.core.logging_config import configure_logging
from kpgb.core.text import generate_excerpt
from kpgb.models.post import BlogPost
from kpgb.services.blog import BlogManager

DEFAULT_TITLE = "Untitled"
DEFAULT_AUTHOR = "Anonymous"
EXCERPT_WORDS = 50
RULE = "-" * 80

TEST_CONTENT = b"Hello, decentralized world!"


def build_post(text: str, title: str = DEFAULT_TITLE, author: str = DEFAULT_AUTHOR) -> BlogPost:
    """
    Build a post from a markdown document.

    Front matter fills in title and author unless they were given explicitly
    (i.e. differ from the defaults). Without an excerpt one is generated.
    """
    frontmatter, body = parse_frontmatter(text)
    if frontmatter is None:
        return BlogPost(title=title, author=author, content=text, excerpt=generate_excerpt(text, EXCERPT_WORDS))

    return BlogPost(
        title=title if title != DEFAULT_TITLE else frontmatter.title,
        author=author if author != DEFAULT_AUTHOR else frontmatter.author,
        slug=frontmatter.slug or "",
        content=body,
        tags=frontmatter.tags,
        category=frontmatter.category,
        excerpt=frontmatter.excerpt or generate_excerpt(body, EXCERPT_WORDS),
        published=bool(frontmatter.published),
    )


def print_post_list(posts: List[BlogPost]) -> None:
    print(RULE)
    for post in posts:
        print(f"ID: {post.storage_id}")
        print(f"Title: {post.title}")
        print(f"Author: {post.author}")
        print(f"Created: {post.created_at:%Y-%m-%d %H:%M}")
        print(f"Published: {'Yes' if post.published else 'No'}")
        if post.tags:
            print(f"Tags: {', '.join(post.tags)}")
        print(RULE)


# ----------------------------------------------------------------------
# Commands that need the blog manager
# ----------------------------------------------------------------------


async def cmd_new(blog: BlogManager, args: argparse.Namespace) -> None:
    if args.content:
        with open(args.content, "r", encoding="utf-8") as f:
            text = f.read()
    else:
        print("Enter content (press Ctrl+D when done):", file=sys.stderr)
        text = sys.stdin.read()

    post = build_post(text, args.title, args.author)
    storage_id = await blog.create_post(post)
    print("Post created successfully!")
    print(f"Storage ID: {storage_id}")


async def cmd_list(blog: BlogManager, args: argparse.Namespace) -> None:
    posts = await blog.list_posts(args.published)
    if not posts:
        print("No posts found.")
        return
    print("Blog Posts:")
    print_post_list(posts)


async def cmd_publish(blog: BlogManager, args: argparse.Namespace) -> None:
    await blog.publish_post(args.id)
    print("Post published successfully!")


async def cmd_read(blog: BlogManager, args: argparse.Namespace) -> None:
    post = await blog.get_post(args.id)
    print(post.title)
    print(f"By {post.author} on {post.created_at:%Y-%m-%d}")
    if post.tags:
        print(f"Tags: {', '.join(post.tags)}")
    print()
    print(post.content)


async def cmd_search(blog: BlogManager, args: argparse.Namespace) -> None:
    posts = await blog.search_posts(args.query)
    if not posts:
        print(f"No posts found matching '{args.query}'")
        return
    print(f"Search results for '{args.query}':")
    print_post_list(posts)


async def cmd_tags(blog: BlogManager, args: argparse.Namespace) -> None:
    tags = await blog.get_all_tags()
    if not tags:
        print("No tags found.")
        return
    for tag in tags:
        print(f"{tag.name} ({tag.post_count})")


async def cmd_delete(blog: BlogManager, args: argparse.Namespace) -> None:
    await blog.delete_post(args.id)
    print("Post deleted.")


async def cmd_init_db(blog: BlogManager, args: argparse.Namespace) -> None:
    # Schema is created while the manager is built
    print("Database initialized.")


async def run_with_blog(
    handler: Callable[[BlogManager, argparse.Namespace], Awaitable[None]],
    args: argparse.Namespace,
    config: Settings,
) -> None:
    from kpgb.main import build_blog_manager, close_blog_manager

    blog = await build_blog_manager(config)
    try:
        await handler(blog, args)
    finally:
        await close_blog_manager(blog)


# ----------------------------------------------------------------------
# Commands that don't
# ----------------------------------------------------------------------


async def cmd_test_storage(args: argparse.Namespace, config: Settings) -> None:
    from kpgb.storage.manager import build_storage_manager

    manager = build_storage_manager(config)
    try:
        storage = manager.get_backend(args.backend)
        if storage is None:
            raise KpgbError(f"Storage backend '{args.backend}' not configured")

        print(f"Testing {storage.storage_type()} storage...")
        metadata = {
            "content_type": "text/plain",
            "test": "true",
            "filename": "test/hello.txt",
            "path": "test/hello.txt",
        }
        result = await storage.store(TEST_CONTENT, metadata)
        print("Stored successfully!")
        print(f"ID: {result.id}")
        if result.url:
            print(f"URL: {result.url}")

        # GitHub reads by path, not by commit sha
        read_id = metadata["path"] if storage.storage_type() == "github" else result.id
        retrieved = await storage.retrieve(read_id)
        print("Retrieved successfully!")
        print(f"Content: {retrieved.decode('utf-8', errors='replace')}")

        exists = await storage.exists(read_id)
        print(f"Exists check: {exists}")
    finally:
        await manager.aclose()


def cmd_serve(args: argparse.Namespace, config: Settings) -> None:
    import uvicorn

    print(f"Starting web server on http://{args.host}:{args.port}")
    print(f"API: http://{args.host}:{args.port}{config.API_PREFIX}/posts")
    uvicorn.run("kpgb.main:app", host=args.host, port=args.port, log_level=config.LOG_LEVEL.lower())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="kpgb", description="Decentralized personal blog")
    sub = parser.add_subparsers(dest="command", required=True)

    new = sub.add_parser("new", help="Create a new blog post")
    new.add_argument("-t", "--title", default=DEFAULT_TITLE, help="Post title")
    new.add_argument("-a", "--author", default=DEFAULT_AUTHOR, help="Author name")
    new.add_argument("-c", "--content", help="Markdown file (reads stdin when omitted)")
    new.set_defaults(handler=cmd_new)

    list_ = sub.add_parser("list", help="List posts")
    list_.add_argument("-p", "--published", action="store_true", help="Only published posts")
    list_.set_defaults(handler=cmd_list)

    for name, handler, help_text in (
        ("publish", cmd_publish, "Publish a post"),
        ("read", cmd_read, "Print a post"),
        ("delete", cmd_delete, "Delete a post"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("id", help="Storage ID of the post")
        p.set_defaults(handler=handler)

    search = sub.add_parser("search", help="Full-text search")
    search.add_argument("query")
    search.set_defaults(handler=cmd_search)

    tags = sub.add_parser("tags", help="List tags with published post counts")
    tags.set_defaults(handler=cmd_tags)

    init_db = sub.add_parser("init-db", help="Create the metadata schema")
    init_db.set_defaults(handler=cmd_init_db)

    test_storage = sub.add_parser("test-storage", help="Round-trip a test object through a backend")
    test_storage.add_argument("-b", "--backend", default="local", choices=["local", "ipfs", "github"])

    serve = sub.add_parser("serve", help="Start the JSON API server")
    serve.add_argument("-p", "--port", type=int, default=3000)
    serve.add_argument("--host", default="127.0.0.1")

    return parser


def main(argv: Optional[List[str]] = None, config: Optional[Settings] = None) -> int:
    args = build_parser().parse_args(argv)
    config = config or get_settings()
    configure_logging(config.LOG_LEVEL, config.LOG_JSON)

    try:
        if args.command == "serve":
            cmd_serve(args, config)
        elif args.command == "test-storage":
            asyncio.run(cmd_test_storage(args, config))
        else:
            asyncio.run(run_with_blog(args.handler, args, config))
    except (KpgbError, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

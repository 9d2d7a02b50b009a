"""Async database engine and schema setup for the metadata store."""

import logging
from typing import Any, Dict

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import AsyncAdaptedQueuePool, StaticPool
from sqlmodel import SQLModel

from kpgb.models import PostRecord, PostTagLink, TagRecord  # noqa: F401  (registers tables)

logger = logging.getLogger(__name__)

# External-content FTS5 index over posts, kept in sync by triggers
FTS_DDL = (
    """
    CREATE VIRTUAL TABLE IF NOT EXISTS posts_fts USING fts5(
        title, content, excerpt,
        content='posts', content_rowid='rowid'
    )
    """,
    """
    CREATE TRIGGER IF NOT EXISTS posts_fts_ai AFTER INSERT ON posts BEGIN
        INSERT INTO posts_fts(rowid, title, content, excerpt)
        VALUES (new.rowid, new.title, new.content, new.excerpt);
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS posts_fts_ad AFTER DELETE ON posts BEGIN
        INSERT INTO posts_fts(posts_fts, rowid, title, content, excerpt)
        VALUES ('delete', old.rowid, old.title, old.content, old.excerpt);
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS posts_fts_au AFTER UPDATE ON posts BEGIN
        INSERT INTO posts_fts(posts_fts, rowid, title, content, excerpt)
        VALUES ('delete', old.rowid, old.title, old.content, old.excerpt);
        INSERT INTO posts_fts(rowid, title, content, excerpt)
        VALUES (new.rowid, new.title, new.content, new.excerpt);
    END
    """,
)

# posts has a TEXT primary key, so the index follows the implicit rowid, which
# VACUUM may renumber. init_db rebuilds the index from posts on every start.
FTS_REBUILD = "INSERT INTO posts_fts(posts_fts) VALUES('rebuild')"


def normalize_database_url(database_url: str) -> str:
    """Use the aiosqlite driver for plain sqlite URLs (e.g. sqlite:///./kpgb.db)."""
    if database_url.startswith("sqlite:") and not database_url.startswith("sqlite://"):
        # sqlite:./kpgb.db shorthand
        database_url = "sqlite:///" + database_url[len("sqlite:"):]
    url = make_url(database_url)
    if url.drivername == "sqlite":
        url = url.set(drivername="sqlite+aiosqlite")
    return url.render_as_string(hide_password=False)


def is_sqlite(engine: AsyncEngine) -> bool:
    return engine.dialect.name == "sqlite"


def create_engine(
    database_url: str,
    pool_size: int = 5,
    pool_timeout: float = 3.0,
    echo: bool = False,
) -> AsyncEngine:
    """
    Create the async engine with a small bounded pool.

    Callers that cannot get a connection within pool_timeout get
    sqlalchemy.exc.TimeoutError instead of waiting forever.
    """
    database_url = normalize_database_url(database_url)
    url = make_url(database_url)
    kwargs: Dict[str, Any] = {"echo": echo}

    if url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:"):
        # One shared connection, otherwise every checkout sees an empty database
        kwargs.update(poolclass=StaticPool, connect_args={"check_same_thread": False})
    else:
        kwargs.update(
            poolclass=AsyncAdaptedQueuePool,
            pool_size=pool_size,
            max_overflow=0,
            pool_timeout=pool_timeout,
            pool_pre_ping=True,
        )

    engine = create_async_engine(database_url, **kwargs)

    if engine.dialect.name == "sqlite":

        @event.listens_for(engine.sync_engine, "connect")
        def set_sqlite_pragmas(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            try:
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.execute("PRAGMA busy_timeout=5000")
            finally:
                cursor.close()

    return engine


async def init_db(engine: AsyncEngine) -> None:
    """Create tables (and the FTS index on SQLite) if they don't exist."""
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
        if is_sqlite(engine):
            for ddl in FTS_DDL:
                await conn.exec_driver_sql(ddl)
            await conn.exec_driver_sql(FTS_REBUILD)
    logger.info(f"Metadata schema ready ({engine.dialect.name})")

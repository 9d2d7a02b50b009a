"""
Tests for database utilities.

Tests cover:
- Transient error detection
- translate_db_errors mapping onto the error taxonomy
- Pool exhaustion surfacing as PoolExhaustedError
- Connection health checks
- Database URL normalization
"""

import pytest
from sqlalchemy.exc import (
    DisconnectionError,
    IntegrityError,
    OperationalError,
    TimeoutError as PoolTimeoutError,
)

from kpgb.core.db_utils import (
    TRANSIENT_ERRORS,
    check_db_connection,
    is_transient_error,
    translate_db_errors,
)
from kpgb.core.errors import PoolExhaustedError, TransientError, is_retryable
from kpgb.db import create_engine, init_db, normalize_database_url
from kpgb.services.metadata_store import MetadataStore


class TestIsTransientError:
    """Tests for is_transient_error function."""

    @pytest.mark.parametrize("error_msg", [
        "database is locked",
        "disk I/O error",
        "server closed the connection unexpectedly",
        "connection refused",
        "connection reset by peer",
        "could not connect to server",
        "the database system is starting up",
    ])
    def test_detects_transient_errors(self, error_msg):
        assert is_transient_error(Exception(error_msg)) is True

    @pytest.mark.parametrize("error_msg", [
        "DATABASE IS LOCKED",
        "Connection Refused",
    ])
    def test_case_insensitive(self, error_msg):
        assert is_transient_error(Exception(error_msg)) is True

    @pytest.mark.parametrize("error_msg", [
        "no such table: posts",
        "UNIQUE constraint failed: posts.content_hash",
        "syntax error near SELECT",
        "",
    ])
    def test_rejects_non_transient_errors(self, error_msg):
        assert is_transient_error(Exception(error_msg)) is False

    def test_with_operational_error(self):
        error = OperationalError("database is locked", None, Exception("locked"))
        assert is_transient_error(error) is True

    def test_all_errors_are_lowercase(self):
        for msg in TRANSIENT_ERRORS:
            assert msg == msg.lower()


class TestTranslateDbErrors:
    @pytest.mark.asyncio
    async def test_passes_results_through(self):
        @translate_db_errors
        async def query():
            return 42

        assert await query() == 42

    @pytest.mark.asyncio
    async def test_pool_timeout_becomes_pool_exhausted(self):
        @translate_db_errors
        async def query():
            raise PoolTimeoutError("QueuePool limit of size 1 overflow 0 reached")

        with pytest.raises(PoolExhaustedError) as exc_info:
            await query()
        assert is_retryable(exc_info.value)

    @pytest.mark.asyncio
    async def test_transient_operational_error(self):
        @translate_db_errors
        async def query():
            raise OperationalError("database is locked", None, Exception("database is locked"))

        with pytest.raises(TransientError):
            await query()

    @pytest.mark.asyncio
    async def test_disconnection_error(self):
        @translate_db_errors
        async def query():
            raise DisconnectionError("connection reset by peer")

        with pytest.raises(TransientError):
            await query()

    @pytest.mark.asyncio
    async def test_permanent_operational_error_propagates(self):
        @translate_db_errors
        async def query():
            raise OperationalError("no such table: posts", None, Exception("no such table"))

        with pytest.raises(OperationalError):
            await query()

    @pytest.mark.asyncio
    async def test_integrity_error_propagates(self):
        @translate_db_errors
        async def query():
            raise IntegrityError("INSERT", None, Exception("UNIQUE constraint failed"))

        with pytest.raises(IntegrityError):
            await query()

    def test_preserves_function_name(self):
        @translate_db_errors
        async def my_query():
            return None

        assert my_query.__name__ == "my_query"


class TestPoolExhaustion:
    @pytest.mark.asyncio
    async def test_exhausted_pool_fails_fast(self, tmp_path):
        engine = create_engine(
            f"sqlite+aiosqlite:///{tmp_path / 'pool.db'}",
            pool_size=1,
            pool_timeout=0.1,
        )
        await init_db(engine)
        store = MetadataStore(engine)
        try:
            async with engine.connect():
                with pytest.raises(PoolExhaustedError):
                    await store.list_posts()

            # Connection released, the store works again
            assert await store.list_posts() == []
        finally:
            await engine.dispose()


class TestCheckDbConnection:
    @pytest.mark.asyncio
    async def test_returns_true_on_healthy_connection(self, engine):
        assert await check_db_connection(engine) is True

    @pytest.mark.asyncio
    async def test_returns_false_on_connection_failure(self, tmp_path):
        engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'missing-dir' / 'x.db'}")
        try:
            assert await check_db_connection(engine) is False
        finally:
            await engine.dispose()


class TestNormalizeDatabaseUrl:
    @pytest.mark.parametrize("url,expected", [
        ("sqlite:///./kpgb.db", "sqlite+aiosqlite:///./kpgb.db"),
        ("sqlite:./kpgb.db", "sqlite+aiosqlite:///./kpgb.db"),
        ("sqlite+aiosqlite:///:memory:", "sqlite+aiosqlite:///:memory:"),
        ("postgresql+asyncpg://u:p@db/kpgb", "postgresql+asyncpg://u:p@db/kpgb"),
    ])
    def test_normalizes(self, url, expected):
        assert normalize_database_url(url) == expected

    @pytest.mark.asyncio
    async def test_memory_database_shares_one_connection(self):
        engine = create_engine("sqlite:///:memory:")
        try:
            await init_db(engine)
            store = MetadataStore(engine)
            assert await store.list_posts() == []
        finally:
            await engine.dispose()

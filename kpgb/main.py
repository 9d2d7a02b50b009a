import logging
from contextlib import asynccontextmanager
from typing import Any, Optional, cast

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from kpgb.api import posts, tags
from kpgb.core.config import Settings, settings
from kpgb.core.db_utils import check_db_connection
from kpgb.core.errors import (
    CapabilityError,
    ConfigurationError,
    DuplicateContentError,
    KpgbError,
    NotFoundError,
    PostExistsError,
    StorageError,
    TransientError,
    capture_exception,
)
from kpgb.core.logging_config import configure_logging
from kpgb.db import create_engine
from kpgb.middleware.context import RequestContextMiddleware
from kpgb.schemas import ApiResponse
from kpgb.services.blog import BlogManager
from kpgb.services.metadata_store import MetadataStore
from kpgb.storage.manager import build_storage_manager

logger = logging.getLogger(__name__)


async def build_blog_manager(config: Settings) -> BlogManager:
    """Wire storage backends and the metadata store from settings."""
    storage = build_storage_manager(config)
    engine = create_engine(
        config.DATABASE_URL,
        pool_size=config.DB_POOL_SIZE,
        pool_timeout=config.DB_POOL_TIMEOUT,
        echo=config.DB_ECHO,
    )
    metadata = MetadataStore(engine)
    await metadata.init_schema()
    return BlogManager(storage, metadata)


async def close_blog_manager(blog: BlogManager) -> None:
    await blog.storage.aclose()
    await blog.metadata.engine.dispose()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # A manager injected by create_app() is owned by the caller
    if getattr(app.state, "blog_manager", None) is not None:
        yield
        return

    config: Settings = app.state.settings
    blog = await build_blog_manager(config)
    app.state.blog_manager = blog

    logger.info("=" * 50)
    logger.info(f"{config.PROJECT_NAME} API starting")
    logger.info(f"Default storage backend: {blog.storage.default_kind.value}")
    logger.info("=" * 50)

    try:
        yield
    finally:
        await close_blog_manager(blog)
        app.state.blog_manager = None


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ApiResponse.fail(message).model_dump())


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return _error(404, str(exc))

    @app.exception_handler(DuplicateContentError)
    async def duplicate_handler(request: Request, exc: DuplicateContentError):
        return _error(409, str(exc))

    @app.exception_handler(PostExistsError)
    async def post_exists_handler(request: Request, exc: PostExistsError):
        return _error(409, str(exc))

    @app.exception_handler(CapabilityError)
    async def capability_handler(request: Request, exc: CapabilityError):
        return _error(400, str(exc))

    @app.exception_handler(TransientError)
    async def transient_handler(request: Request, exc: TransientError):
        capture_exception(exc, context={"path": request.url.path}, level="warning")
        return _error(503, str(exc))

    @app.exception_handler(StorageError)
    async def storage_handler(request: Request, exc: StorageError):
        capture_exception(exc, context={"path": request.url.path})
        return _error(502, str(exc))

    @app.exception_handler(ConfigurationError)
    async def configuration_handler(request: Request, exc: ConfigurationError):
        capture_exception(exc, context={"path": request.url.path})
        return _error(500, str(exc))

    @app.exception_handler(KpgbError)
    async def kpgb_handler(request: Request, exc: KpgbError):
        capture_exception(exc, context={"path": request.url.path})
        return _error(500, str(exc))

    @app.exception_handler(RequestValidationError)
    async def validation_handler(request: Request, exc: RequestValidationError):
        return _error(422, "Invalid request: " + "; ".join(str(e.get("msg")) for e in exc.errors()))


def create_app(config: Settings = settings, blog_manager: Optional[BlogManager] = None) -> FastAPI:
    configure_logging(config.LOG_LEVEL, config.LOG_JSON)

    app = FastAPI(
        title=config.PROJECT_NAME,
        openapi_url=f"{config.API_PREFIX}/openapi.json",
        lifespan=lifespan,
    )
    app.state.settings = config
    app.state.blog_manager = blog_manager

    app.add_middleware(cast(Any, RequestContextMiddleware))
    app.add_middleware(
        cast(Any, CORSMiddleware),
        allow_origins=config.CORS_ORIGINS,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Correlation-ID"],
    )

    register_exception_handlers(app)

    app.include_router(posts.router, prefix=config.API_PREFIX, tags=["posts"])
    app.include_router(tags.router, prefix=config.API_PREFIX, tags=["tags"])

    @app.get("/health")
    async def health(request: Request):
        """Database connectivity and the active storage backend."""
        blog: Optional[BlogManager] = request.app.state.blog_manager
        if blog is None:
            return JSONResponse(status_code=503, content={"status": "starting"})

        db_ok = await check_db_connection(blog.metadata.engine)
        return JSONResponse(
            status_code=200 if db_ok else 503,
            content={
                "status": "healthy" if db_ok else "unhealthy",
                "database": db_ok,
                "storage": blog.storage.default_kind.value,
            },
        )

    return app


app = create_app()

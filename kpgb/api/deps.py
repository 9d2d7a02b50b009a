from fastapi import Request

from kpgb.core.errors import ConfigurationError
from kpgb.services.blog import BlogManager


def get_blog_manager(request: Request) -> BlogManager:
    """BlogManager built by the application lifespan."""
    manager = getattr(request.app.state, "blog_manager", None)
    if manager is None:
        raise ConfigurationError("Blog manager not initialized")
    return manager

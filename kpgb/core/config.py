from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    PROJECT_NAME: str = "kpgb"
    API_PREFIX: str = "/api"

    # Metadata database (defaults to an embedded SQLite file)
    DATABASE_URL: str = "sqlite+aiosqlite:///./kpgb.db"
    DB_POOL_SIZE: int = 5
    DB_POOL_TIMEOUT: float = 3.0  # seconds to wait for a pooled connection
    DB_ECHO: bool = False

    # Storage backends
    LOCAL_STORAGE_PATH: str = "./storage/local"
    IPFS_API_URL: Optional[str] = None  # Presence selects IPFS as the default backend
    GITHUB_OWNER: Optional[str] = None
    GITHUB_REPO: Optional[str] = None
    GITHUB_BRANCH: str = "main"
    GITHUB_TOKEN: Optional[str] = None
    STORAGE_HTTP_TIMEOUT: float = 30.0

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False  # JSON lines instead of the colored console renderer

    # Web API
    CORS_ORIGINS: List[str] = ["*"]

    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env", extra="ignore")

    @property
    def github_configured(self) -> bool:
        return bool(self.GITHUB_OWNER and self.GITHUB_REPO and self.GITHUB_TOKEN)


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()

import asyncio
import sys
from pathlib import Path

project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from kpgb.core.config import settings  # noqa: E402
from kpgb.db import create_engine  # noqa: E402
from kpgb.services.metadata_store import MetadataStore  # noqa: E402


async def init():
    engine = create_engine(settings.DATABASE_URL)
    try:
        await MetadataStore(engine).init_schema()
    finally:
        await engine.dispose()


if __name__ == "__main__":
    print(f"Creating tables in {settings.DATABASE_URL}...")
    try:
        asyncio.run(init())
        print("Tables created successfully!")
    except Exception as e:
        print(f"Error creating tables: {e}")
        sys.exit(1)

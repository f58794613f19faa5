from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

logger = logging.getLogger(__name__)

ASYNC_SQLITE_PREFIX = "sqlite+aiosqlite://"


def normalize_database_url(database_url: str) -> str:
    url = str(database_url or "").strip()
    if not url:
        return url
    if url.startswith(ASYNC_SQLITE_PREFIX):
        return url
    if url.startswith("sqlite+pysqlite://"):
        return ASYNC_SQLITE_PREFIX + url[len("sqlite+pysqlite://") :]
    if url.startswith("sqlite://"):
        return ASYNC_SQLITE_PREFIX + url[len("sqlite://") :]
    if "://" not in url:
        # bare filesystem path
        return f"{ASYNC_SQLITE_PREFIX}/{Path(url).expanduser()}"
    return url


def sqlite_file_path(database_url: str) -> Path | None:
    url = normalize_database_url(database_url)
    if not url.startswith(ASYNC_SQLITE_PREFIX + "/"):
        return None
    raw_path = url[len(ASYNC_SQLITE_PREFIX + "/") :].split("?", 1)[0]
    if not raw_path or raw_path == ":memory:":
        return None
    return Path(raw_path)


def build_engine(database_url: str) -> AsyncEngine:
    db_url = normalize_database_url(database_url)
    file_path = sqlite_file_path(db_url)
    if file_path is not None:
        file_path.parent.mkdir(parents=True, exist_ok=True)
    logger.debug("Creating engine for %s", db_url)
    return create_async_engine(db_url, future=True)


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False)

from __future__ import annotations

import logging

from sqlalchemy import text as sql_text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)

CATEGORIES_TABLE = "categories"
PROJECTS_TABLE = "projects"
TASKS_TABLE = "tasks"
NOTES_TABLE = "notes"

ALL_TABLES = (CATEGORIES_TABLE, PROJECTS_TABLE, TASKS_TABLE, NOTES_TABLE)

# (table, column, ddl) appended to databases created by older schema versions
ADDITIVE_COLUMNS = [
    (TASKS_TABLE, "start_time", "TEXT"),
    (TASKS_TABLE, "end_time", "TEXT"),
    (TASKS_TABLE, "notification_config", "TEXT"),
    (TASKS_TABLE, "image", "TEXT"),
    (PROJECTS_TABLE, "description", "TEXT"),
    (NOTES_TABLE, "password_hash", "TEXT"),
]


async def ensure_column(engine: AsyncEngine, table_name: str, column_name: str, column_ddl: str) -> bool:
    try:
        async with engine.begin() as conn:
            await conn.execute(
                sql_text(f"ALTER TABLE {table_name} ADD COLUMN {column_name} {column_ddl}")
            )
    except DBAPIError as exc:
        if "duplicate column" in str(exc).lower():
            return False
        logger.warning("Failed to add column %s.%s: %s", table_name, column_name, exc)
        return False
    logger.info("Added column %s.%s", table_name, column_name)
    return True


async def ensure_index(engine: AsyncEngine, index_sql: str) -> None:
    try:
        async with engine.begin() as conn:
            await conn.execute(sql_text(index_sql))
    except DBAPIError as exc:
        logger.warning("Failed to create index: %s", exc)


async def init_db(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.execute(
            sql_text(
                f"""
                CREATE TABLE IF NOT EXISTS {CATEGORIES_TABLE} (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    color TEXT NOT NULL,
                    icon TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
        )
        await conn.execute(
            sql_text(
                f"""
                CREATE TABLE IF NOT EXISTS {PROJECTS_TABLE} (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    category_id TEXT NOT NULL,
                    description TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
        )
        await conn.execute(
            sql_text(
                f"""
                CREATE TABLE IF NOT EXISTS {TASKS_TABLE} (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    description TEXT,
                    due_date TEXT NOT NULL,
                    start_time TEXT,
                    end_time TEXT,
                    notification_config TEXT,
                    image TEXT,
                    project_id TEXT NOT NULL,
                    "order" INTEGER NOT NULL DEFAULT 0,
                    completed INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                )
                """
            )
        )
        await conn.execute(
            sql_text(
                f"""
                CREATE TABLE IF NOT EXISTS {NOTES_TABLE} (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    content TEXT NOT NULL,
                    protected INTEGER NOT NULL DEFAULT 0,
                    password_hash TEXT,
                    created_at TEXT NOT NULL,
                    modified_at TEXT NOT NULL
                )
                """
            )
        )

    for table_name, column_name, column_ddl in ADDITIVE_COLUMNS:
        await ensure_column(engine, table_name, column_name, column_ddl)

    await ensure_index(
        engine,
        f"CREATE INDEX IF NOT EXISTS idx_{PROJECTS_TABLE}_category ON {PROJECTS_TABLE} (category_id)",
    )
    await ensure_index(
        engine,
        f"CREATE INDEX IF NOT EXISTS idx_{TASKS_TABLE}_project ON {TASKS_TABLE} (project_id)",
    )
    await ensure_index(
        engine,
        f"CREATE INDEX IF NOT EXISTS idx_{TASKS_TABLE}_due_date ON {TASKS_TABLE} (due_date)",
    )
    await ensure_index(
        engine,
        f"CREATE INDEX IF NOT EXISTS idx_{NOTES_TABLE}_modified ON {NOTES_TABLE} (modified_at)",
    )

from __future__ import annotations

import logging
from typing import Callable

from sqlalchemy import text as sql_text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from planstore.codec import (
    CATEGORY_CODEC,
    NOTE_CODEC,
    PROJECT_CODEC,
    TASK_CODEC,
    RecordCodec,
)
from planstore.db import build_engine, build_sessionmaker
from planstore.db_init import (
    ALL_TABLES,
    CATEGORIES_TABLE,
    NOTES_TABLE,
    PROJECTS_TABLE,
    TASKS_TABLE,
    init_db,
)
from planstore.errors import StorageUnavailableError
from planstore.schemas import Category, Note, Project, Task

logger = logging.getLogger(__name__)

CapabilityProbe = Callable[[], bool]


def _quote(column: str) -> str:
    return f'"{column}"' if column == "order" else column


def _upsert_sql(table: str, codec: RecordCodec) -> str:
    columns = ", ".join(_quote(col) for col in codec.columns)
    placeholders = ", ".join(f":{col}" for col in codec.columns)
    return f"INSERT OR REPLACE INTO {table} ({columns}) VALUES ({placeholders})"


_CATEGORY_UPSERT = _upsert_sql(CATEGORIES_TABLE, CATEGORY_CODEC)
_PROJECT_UPSERT = _upsert_sql(PROJECTS_TABLE, PROJECT_CODEC)
_TASK_UPSERT = _upsert_sql(TASKS_TABLE, TASK_CODEC)
_NOTE_UPSERT = _upsert_sql(NOTES_TABLE, NOTE_CODEC)


class RelationalStore:
    """Embedded SQLite storage, inert when the platform does not support it."""

    def __init__(self, database_url: str, probe: CapabilityProbe):
        self.database_url = database_url
        self._probe = probe
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker | None = None
        self._supported = False

    async def initialize(self) -> None:
        if self._engine is not None:
            return
        self._supported = bool(self._probe())
        if not self._supported:
            logger.info("Embedded relational engine not supported on this platform")
            return
        engine = build_engine(self.database_url)
        try:
            async with engine.connect() as conn:
                await conn.execute(sql_text("SELECT 1"))
            await init_db(engine)
        except Exception:
            await engine.dispose()
            raise
        self._engine = engine
        self._session_factory = build_sessionmaker(engine)
        logger.info("Relational store ready at %s", self.database_url)

    def is_available(self) -> bool:
        return self._supported and self._engine is not None

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._session_factory = None
        self._supported = False

    async def query(self, sql: str, params: dict | None = None) -> list[dict]:
        if not self.is_available():
            return []
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(sql_text(sql), params or {})).mappings().all()
        except SQLAlchemyError as exc:
            logger.error("Relational query failed: %s", exc)
            raise StorageUnavailableError(f"relational query failed: {exc}") from exc
        return [dict(row) for row in rows]

    async def execute(self, sql: str, params: dict | None = None) -> int:
        return await self.execute_many([(sql, params or {})])

    async def execute_many(self, statements: list[tuple[str, dict]]) -> int:
        """Runs every statement in one transaction; returns the summed rowcount."""
        if not self.is_available():
            return 0
        changed = 0
        try:
            async with self._session_factory() as session:
                for sql, params in statements:
                    result = await session.execute(sql_text(sql), params)
                    changed += max(result.rowcount or 0, 0)
                await session.commit()
        except SQLAlchemyError as exc:
            logger.error("Relational write failed: %s", exc)
            raise StorageUnavailableError(f"relational write failed: {exc}") from exc
        return changed

    async def save_category(self, category: Category) -> None:
        await self.execute(_CATEGORY_UPSERT, CATEGORY_CODEC.to_relational_row(category))

    async def save_project(self, project: Project) -> None:
        await self.execute(_PROJECT_UPSERT, PROJECT_CODEC.to_relational_row(project))

    async def save_task(self, task: Task) -> None:
        await self.execute(_TASK_UPSERT, TASK_CODEC.to_relational_row(task))

    async def save_tasks(self, tasks: list[Task]) -> None:
        if tasks:
            await self.execute_many([(_TASK_UPSERT, TASK_CODEC.to_relational_row(task)) for task in tasks])

    async def save_note(self, note: Note) -> None:
        await self.execute(_NOTE_UPSERT, NOTE_CODEC.to_relational_row(note))

    async def delete_category(self, category_id: str) -> None:
        await self.execute(f"DELETE FROM {CATEGORIES_TABLE} WHERE id = :id", {"id": category_id})

    async def delete_project(self, project_id: str) -> None:
        await self.execute_many(
            [
                (f"DELETE FROM {TASKS_TABLE} WHERE project_id = :id", {"id": project_id}),
                (f"DELETE FROM {PROJECTS_TABLE} WHERE id = :id", {"id": project_id}),
            ]
        )

    async def delete_tasks_by_project(self, project_id: str) -> None:
        await self.execute(f"DELETE FROM {TASKS_TABLE} WHERE project_id = :id", {"id": project_id})

    async def delete_task(self, task_id: str) -> None:
        await self.execute(f"DELETE FROM {TASKS_TABLE} WHERE id = :id", {"id": task_id})

    async def delete_note(self, note_id: str) -> None:
        await self.execute(f"DELETE FROM {NOTES_TABLE} WHERE id = :id", {"id": note_id})

    async def list_categories(self) -> list[dict]:
        return await self.query(f"SELECT * FROM {CATEGORIES_TABLE} ORDER BY name")

    async def list_projects(self) -> list[dict]:
        return await self.query(f"SELECT * FROM {PROJECTS_TABLE} ORDER BY name")

    async def list_tasks(self) -> list[dict]:
        return await self.query(f'SELECT * FROM {TASKS_TABLE} ORDER BY "order", created_at')

    async def list_tasks_by_project(self, project_id: str) -> list[dict]:
        return await self.query(
            f'SELECT * FROM {TASKS_TABLE} WHERE project_id = :project_id ORDER BY "order", created_at',
            {"project_id": project_id},
        )

    async def list_notes(self) -> list[dict]:
        return await self.query(f"SELECT * FROM {NOTES_TABLE} ORDER BY modified_at DESC")

    async def clear_all(self) -> None:
        await self.execute_many([(f"DELETE FROM {table}", {}) for table in ALL_TABLES])

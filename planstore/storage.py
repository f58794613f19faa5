from __future__ import annotations

import logging

from planstore.codec import CATEGORY_CODEC, NOTE_CODEC, PROJECT_CODEC, TASK_CODEC
from planstore.kv_store import (
    CATEGORIES_KEY,
    NOTES_KEY,
    PROJECTS_KEY,
    TASKS_KEY,
    KeyValueStore,
)
from planstore.relational import RelationalStore

logger = logging.getLogger(__name__)


class StorageSelector:
    """Decides once per lifecycle which backend answers reads.

    The fallback store is always initialized and always written to. The
    relational store is authoritative only when it initialized cleanly; any
    failure degrades to the fallback store until ``reset()``.
    """

    def __init__(self, fallback: KeyValueStore, relational: RelationalStore):
        self.fallback = fallback
        self.relational = relational
        self._initialized = False
        self._use_primary = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        if self._initialized:
            return
        await self.fallback.init()
        try:
            await self.relational.initialize()
            self._use_primary = self.relational.is_available()
        except Exception as exc:
            logger.warning("Relational store unavailable, using key-value store: %s", exc)
            await self.relational.close()
            self._use_primary = False
        self._initialized = True
        logger.info(
            "Storage initialized (backend=%s)", "relational" if self._use_primary else "key-value"
        )

    def is_using_primary(self) -> bool:
        return self._use_primary

    async def sync_from_fallback(self) -> int:
        if not self._use_primary:
            return 0
        written = 0
        categories = CATEGORY_CODEC.decode_fallback_records(await self.fallback.get_collection(CATEGORIES_KEY))
        for category in categories:
            await self.relational.save_category(category)
        written += len(categories)

        projects = PROJECT_CODEC.decode_fallback_records(await self.fallback.get_collection(PROJECTS_KEY))
        for project in projects:
            await self.relational.save_project(project)
        written += len(projects)

        tasks = TASK_CODEC.decode_fallback_records(await self.fallback.get_collection(TASKS_KEY))
        await self.relational.save_tasks(tasks)
        written += len(tasks)

        notes = NOTE_CODEC.decode_fallback_records(await self.fallback.get_collection(NOTES_KEY))
        for note in notes:
            await self.relational.save_note(note)
        written += len(notes)

        logger.info("Synced %s record(s) from key-value store into relational store", written)
        return written

    async def reset(self) -> None:
        await self.relational.close()
        self._initialized = False
        self._use_primary = False

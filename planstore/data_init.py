from __future__ import annotations

import asyncio
import importlib.util
import json
import logging
from dataclasses import dataclass
from pathlib import Path

from planstore.errors import PlanstoreError, StorageUnavailableError
from planstore.kv_store import INITIALIZED_KEY, KeyValueStore
from planstore.relational import CapabilityProbe, RelationalStore
from planstore.repositories import (
    CategoryRepository,
    ConfigRepository,
    NoteRepository,
    ProjectRepository,
    TaskRepository,
)
from planstore.schemas import CategoryCreate
from planstore.settings import Settings, get_settings
from planstore.storage import StorageSelector

logger = logging.getLogger(__name__)


def default_probe(settings: Settings) -> CapabilityProbe:
    def _probe() -> bool:
        if not settings.relational_enabled:
            return False
        return importlib.util.find_spec("aiosqlite") is not None

    return _probe


def load_seed_categories(path: Path) -> list[CategoryCreate]:
    if not path.exists():
        logger.warning("Seed file %s not found", path)
        return []
    payload = json.loads(path.read_text(encoding="utf-8"))
    items = payload.get("categories") if isinstance(payload, dict) else None
    seeds = []
    for item in items or []:
        if not isinstance(item, dict):
            continue
        try:
            seeds.append(CategoryCreate.model_validate(item))
        except ValueError as exc:
            logger.warning("Skipping invalid seed category %r: %s", item, exc)
    return seeds


class DataInitializer:
    def __init__(self, selector: StorageSelector, categories: CategoryRepository, seed_path: Path | None = None):
        self.selector = selector
        self.categories = categories
        self.seed_path = seed_path

    async def is_initialized(self) -> bool:
        try:
            return bool(await self.selector.fallback.get(INITIALIZED_KEY, False))
        except StorageUnavailableError as exc:
            logger.warning("Could not read initialization flag: %s", exc)
            return False

    async def initialize(self) -> None:
        await self.selector.initialize()
        if await self.is_initialized():
            await self._sync()
            return
        try:
            await self._seed_categories()
            await self._sync()
            await self.selector.fallback.set(INITIALIZED_KEY, True)
            logger.info("Initial data loaded")
        except (PlanstoreError, OSError, ValueError) as exc:
            logger.error("Failed to load initial data: %s", exc)

    async def _sync(self) -> None:
        if not self.selector.is_using_primary():
            return
        try:
            await self.selector.sync_from_fallback()
        except PlanstoreError as exc:
            logger.error("Failed to sync key-value store into relational store: %s", exc)

    async def _seed_categories(self) -> None:
        if self.seed_path is None:
            return
        try:
            seeds = await asyncio.to_thread(load_seed_categories, self.seed_path)
        except (OSError, ValueError) as exc:
            logger.warning("Could not read seed file %s: %s", self.seed_path, exc)
            return
        if not seeds or await self.categories.get_all():
            return
        for seed in seeds:
            await self.categories.create(seed)
        logger.info("Created %s initial categories", len(seeds))

    async def reset_all_data(self) -> None:
        await self.selector.initialize()
        await self.selector.fallback.clear()
        if self.selector.is_using_primary():
            await self.selector.relational.clear_all()
        await self.selector.fallback.set(INITIALIZED_KEY, False)
        await self.initialize()


@dataclass
class Planner:
    selector: StorageSelector
    categories: CategoryRepository
    projects: ProjectRepository
    tasks: TaskRepository
    notes: NoteRepository
    config: ConfigRepository
    initializer: DataInitializer

    async def close(self) -> None:
        await self.selector.reset()


def build_planner(
    settings: Settings | None = None,
    probe: CapabilityProbe | None = None,
) -> Planner:
    settings = settings or get_settings()
    fallback = KeyValueStore(settings.fallback_path)
    relational = RelationalStore(settings.database_url, probe or default_probe(settings))
    selector = StorageSelector(fallback, relational)
    categories = CategoryRepository(selector)
    return Planner(
        selector=selector,
        categories=categories,
        projects=ProjectRepository(selector),
        tasks=TaskRepository(selector),
        notes=NoteRepository(selector),
        config=ConfigRepository(fallback),
        initializer=DataInitializer(selector, categories, settings.seed_path),
    )


async def open_planner(
    settings: Settings | None = None,
    probe: CapabilityProbe | None = None,
) -> Planner:
    planner = build_planner(settings, probe)
    await planner.initializer.initialize()
    return planner

from __future__ import annotations

import hashlib
import hmac
import logging
import re
from datetime import date, datetime, timezone
from typing import Generic, TypeVar
from uuid import uuid4

import bcrypt
from pydantic import BaseModel, ValidationError

from planstore.codec import (
    CATEGORY_CODEC,
    NOTE_CODEC,
    PROJECT_CODEC,
    TASK_CODEC,
    RecordCodec,
)
from planstore.errors import (
    NotFoundError,
    RecordValidationError,
    ReferentialConflictError,
    StorageUnavailableError,
)
from planstore.kv_store import (
    APP_CONFIG_KEY,
    CATEGORIES_KEY,
    NOTES_KEY,
    PROJECTS_KEY,
    TASKS_KEY,
    KeyValueStore,
)
from planstore.schemas import (
    AppConfig,
    AppConfigPatch,
    Category,
    CategoryCreate,
    CategoryPatch,
    Note,
    NoteCreate,
    NotePatch,
    Project,
    ProjectCreate,
    ProjectPatch,
    Task,
    TaskCreate,
    TaskPatch,
    patch_values,
)
from planstore.storage import StorageSelector

logger = logging.getLogger(__name__)

BCRYPT_MAX_PASSWORD_BYTES = 72
_LEGACY_DIGEST = re.compile(r"[0-9a-f]{64}")

EntityT = TypeVar("EntityT", bound=BaseModel)
ModelT = TypeVar("ModelT", bound=BaseModel)


def _new_id() -> str:
    return uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _coerce(model: type[ModelT], value) -> ModelT:
    if isinstance(value, model):
        return value
    try:
        return model.model_validate(value)
    except ValidationError as exc:
        raise RecordValidationError(str(exc)) from exc


def _dedupe_by_id(items: list) -> list:
    seen = set()
    unique = []
    for item in items:
        if item.id in seen:
            continue
        seen.add(item.id)
        unique.append(item)
    return unique


def _record_id(record) -> str | None:
    return record.get("id") if isinstance(record, dict) else None


class _EntityRepository(Generic[EntityT]):
    entity_name = "record"
    collection = ""
    codec: RecordCodec
    patch_model: type[BaseModel]
    dedupe = False

    def __init__(self, selector: StorageSelector):
        self.selector = selector

    @property
    def fallback(self) -> KeyValueStore:
        return self.selector.fallback

    @property
    def relational(self):
        return self.selector.relational

    async def _load_primary(self) -> list[dict]:
        raise NotImplementedError

    async def _save_primary(self, entity: EntityT) -> None:
        raise NotImplementedError

    async def _delete_primary(self, entity_id: str) -> None:
        raise NotImplementedError

    async def get_all(self) -> list[EntityT]:
        if self.selector.is_using_primary():
            items = self.codec.decode_relational_rows(await self._load_primary())
        else:
            items = self.codec.decode_fallback_records(await self.fallback.get_collection(self.collection))
        if self.dedupe:
            items = _dedupe_by_id(items)
        return items

    async def get_by_id(self, entity_id: str) -> EntityT | None:
        for item in await self.get_all():
            if item.id == entity_id:
                return item
        return None

    async def exists(self, entity_id: str) -> bool:
        return await self.get_by_id(entity_id) is not None

    async def _require(self, entity_id: str) -> EntityT:
        entity = await self.get_by_id(entity_id)
        if entity is None:
            raise NotFoundError(self.entity_name, entity_id)
        return entity

    def _build(self, payload: dict) -> EntityT:
        return _coerce(self.codec.model, payload)

    async def _insert(self, entity: EntityT) -> None:
        if self.selector.is_using_primary():
            await self._save_primary(entity)
        records = await self.fallback.get_collection(self.collection)
        if any(_record_id(record) == entity.id for record in records):
            logger.warning("%s %s already mirrored in key-value store", self.entity_name, entity.id)
            return
        records.append(self.codec.to_fallback_record(entity))
        await self.fallback.set_collection(self.collection, records)

    async def _mirror(self, entities: list[EntityT]) -> None:
        records = await self.fallback.get_collection(self.collection)
        positions = {_record_id(record): index for index, record in enumerate(records)}
        for entity in entities:
            encoded = self.codec.to_fallback_record(entity)
            index = positions.get(entity.id)
            if index is None:
                positions[entity.id] = len(records)
                records.append(encoded)
            else:
                records[index] = encoded
        await self.fallback.set_collection(self.collection, records)

    async def _store(self, entity: EntityT) -> None:
        if self.selector.is_using_primary():
            await self._save_primary(entity)
        await self._mirror([entity])

    async def _unmirror(self, field: str, values: set[str], collection: str | None = None) -> None:
        collection = collection or self.collection
        records = await self.fallback.get_collection(collection)
        kept = [record for record in records if not (isinstance(record, dict) and record.get(field) in values)]
        if len(kept) != len(records):
            await self.fallback.set_collection(collection, kept)

    async def update(self, entity_id: str, patch) -> EntityT:
        patch = _coerce(self.patch_model, patch)
        current = await self._require(entity_id)
        merged = {**current.model_dump(), **patch_values(patch), "id": current.id}
        entity = self._build(merged)
        await self._store(entity)
        return entity

    async def delete(self, entity_id: str) -> None:
        if self.selector.is_using_primary():
            await self._delete_primary(entity_id)
        await self._unmirror("id", {entity_id})


class CategoryRepository(_EntityRepository[Category]):
    entity_name = "category"
    collection = CATEGORIES_KEY
    codec = CATEGORY_CODEC
    patch_model = CategoryPatch
    dedupe = True

    async def _load_primary(self) -> list[dict]:
        return await self.relational.list_categories()

    async def _save_primary(self, entity: Category) -> None:
        await self.relational.save_category(entity)

    async def _delete_primary(self, entity_id: str) -> None:
        await self.relational.delete_category(entity_id)

    async def create(self, data: CategoryCreate | dict) -> Category:
        data = _coerce(CategoryCreate, data)
        category = self._build({**data.model_dump(), "id": _new_id(), "created_at": _utcnow()})
        await self._insert(category)
        return category

    async def delete(self, entity_id: str) -> None:
        # the key-value store is always complete, whichever backend is authoritative
        projects = await self.fallback.get_collection(PROJECTS_KEY)
        dependents = [
            record.get("id")
            for record in projects
            if isinstance(record, dict) and record.get("categoryId") == entity_id
        ]
        if dependents:
            raise ReferentialConflictError(self.entity_name, entity_id, dependents)
        await super().delete(entity_id)


class ProjectRepository(_EntityRepository[Project]):
    entity_name = "project"
    collection = PROJECTS_KEY
    codec = PROJECT_CODEC
    patch_model = ProjectPatch
    dedupe = True

    async def _load_primary(self) -> list[dict]:
        return await self.relational.list_projects()

    async def _save_primary(self, entity: Project) -> None:
        await self.relational.save_project(entity)

    async def _delete_primary(self, entity_id: str) -> None:
        await self.relational.delete_project(entity_id)

    async def get_by_category(self, category_id: str) -> list[Project]:
        return [project for project in await self.get_all() if project.category_id == category_id]

    async def create(self, data: ProjectCreate | dict) -> Project:
        data = _coerce(ProjectCreate, data)
        project = self._build({**data.model_dump(), "id": _new_id(), "created_at": _utcnow()})
        await self._insert(project)
        return project

    async def delete(self, entity_id: str) -> None:
        if self.selector.is_using_primary():
            await self._delete_primary(entity_id)
        await self._unmirror("projectId", {entity_id}, collection=TASKS_KEY)
        await self._unmirror("id", {entity_id})


def is_task_overdue(task: Task, today: date | None = None) -> bool:
    if task.completed:
        return False
    today = today or date.today()
    due = task.due_date
    if due.tzinfo is not None:
        due = due.astimezone()
    return due.date() < today


class TaskRepository(_EntityRepository[Task]):
    entity_name = "task"
    collection = TASKS_KEY
    codec = TASK_CODEC
    patch_model = TaskPatch

    async def _load_primary(self) -> list[dict]:
        return await self.relational.list_tasks()

    async def _save_primary(self, entity: Task) -> None:
        await self.relational.save_task(entity)

    async def _delete_primary(self, entity_id: str) -> None:
        await self.relational.delete_task(entity_id)

    async def get_by_project(self, project_id: str) -> list[Task]:
        if self.selector.is_using_primary():
            return self.codec.decode_relational_rows(await self.relational.list_tasks_by_project(project_id))
        tasks = [task for task in await self.get_all() if task.project_id == project_id]
        return sorted(tasks, key=lambda task: task.order)

    async def _next_order(self, project_id: str, exclude_id: str | None = None) -> int:
        orders = [task.order for task in await self.get_by_project(project_id) if task.id != exclude_id]
        return max(orders) + 1 if orders else 0

    async def get_overdue(self, today: date | None = None) -> list[Task]:
        return [task for task in await self.get_all() if is_task_overdue(task, today)]

    async def create(self, data: TaskCreate | dict) -> Task:
        data = _coerce(TaskCreate, data)
        task = self._build(
            {
                **data.model_dump(),
                "id": _new_id(),
                "order": await self._next_order(data.project_id),
                "completed": False,
                "created_at": _utcnow(),
            }
        )
        await self._insert(task)
        return task

    async def toggle_completed(self, entity_id: str, completed: bool) -> Task:
        return await self.update(entity_id, TaskPatch(completed=completed))

    async def move_to_project(self, entity_id: str, project_id: str) -> Task:
        current = await self._require(entity_id)
        order = await self._next_order(project_id, exclude_id=entity_id)
        task = current.model_copy(update={"project_id": project_id, "order": order})
        await self._store(task)
        return task

    async def reorder(self, project_id: str, ordered_ids: list[str]) -> list[Task]:
        siblings = {task.id: task for task in await self.get_by_project(project_id)}
        changed = {}
        for index, task_id in enumerate(ordered_ids):
            task = changed.get(task_id) or siblings.get(task_id)
            if task is None:
                continue
            changed[task_id] = task.model_copy(update={"order": index})
        if changed:
            if self.selector.is_using_primary():
                await self.relational.save_tasks(list(changed.values()))
            await self._mirror(list(changed.values()))
        return await self.get_by_project(project_id)

    async def delete_by_project(self, project_id: str) -> None:
        if self.selector.is_using_primary():
            await self.relational.delete_tasks_by_project(project_id)
        await self._unmirror("projectId", {project_id})


class NoteRepository(_EntityRepository[Note]):
    """Notes, optionally protected by a password.

    Only a salted bcrypt hash of the password is stored. Unsalted SHA-256
    digests written by older versions still verify. ``unlock`` returns None
    for a wrong password instead of raising.
    """

    entity_name = "note"
    collection = NOTES_KEY
    codec = NOTE_CODEC
    patch_model = NotePatch

    async def _load_primary(self) -> list[dict]:
        return await self.relational.list_notes()

    async def _save_primary(self, entity: Note) -> None:
        await self.relational.save_note(entity)

    async def _delete_primary(self, entity_id: str) -> None:
        await self.relational.delete_note(entity_id)

    @staticmethod
    def hash_password(password: str) -> str:
        encoded = password.encode("utf-8")
        if len(encoded) > BCRYPT_MAX_PASSWORD_BYTES:
            raise RecordValidationError(f"password is longer than {BCRYPT_MAX_PASSWORD_BYTES} bytes")
        return bcrypt.hashpw(encoded, bcrypt.gensalt()).decode("utf-8")

    @staticmethod
    def verify_password(password: str, password_hash: str | None) -> bool:
        if not password_hash:
            return False
        if _LEGACY_DIGEST.fullmatch(password_hash):
            legacy = hashlib.sha256(password.encode("utf-8")).hexdigest()
            return hmac.compare_digest(legacy, password_hash)
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            return False

    @classmethod
    def _protection(cls, password: str) -> dict:
        if password.strip():
            return {"protected": True, "password_hash": cls.hash_password(password)}
        return {"protected": False, "password_hash": None}

    async def create(self, data: NoteCreate | dict, password: str | None = None) -> Note:
        data = _coerce(NoteCreate, data)
        now = _utcnow()
        note = self._build(
            {
                **data.model_dump(),
                **self._protection(password or ""),
                "id": _new_id(),
                "created_at": now,
                "modified_at": now,
            }
        )
        await self._insert(note)
        return note

    async def update(self, entity_id: str, patch=None, password: str | None = None) -> Note:
        patch = _coerce(NotePatch, patch if patch is not None else {})
        current = await self._require(entity_id)
        merged = {**current.model_dump(), **patch_values(patch), "id": current.id, "modified_at": _utcnow()}
        if password is not None:
            merged.update(self._protection(password))
        note = self._build(merged)
        await self._store(note)
        return note

    async def unlock(self, entity_id: str, password: str) -> Note | None:
        note = await self.get_by_id(entity_id)
        if note is None or not note.protected:
            return note
        if not self.verify_password(password, note.password_hash):
            return None
        return note


class ConfigRepository:
    def __init__(self, store: KeyValueStore):
        self.store = store
        self._config: AppConfig | None = None

    async def _load(self) -> AppConfig:
        try:
            saved = await self.store.get(APP_CONFIG_KEY)
        except StorageUnavailableError as exc:
            logger.error("Failed to load app config: %s", exc)
            return AppConfig()
        if not isinstance(saved, dict):
            config = AppConfig()
            self._config = config
            await self._save()
            return config
        try:
            config = AppConfig.model_validate({**AppConfig().model_dump(by_alias=True), **saved})
        except ValidationError as exc:
            logger.warning("Stored app config is invalid, using defaults: %s", exc)
            config = AppConfig()
        self._config = config
        return config

    async def _save(self) -> None:
        if self._config is not None:
            await self.store.set(APP_CONFIG_KEY, self._config.model_dump(by_alias=True))

    async def get_config(self) -> AppConfig:
        if self._config is None:
            return await self._load()
        return self._config

    async def update_config(self, patch: AppConfigPatch | dict) -> AppConfig:
        patch = _coerce(AppConfigPatch, patch)
        current = await self.get_config()
        self._config = _coerce(AppConfig, {**current.model_dump(), **patch_values(patch)})
        await self._save()
        return self._config

    async def reset_config(self) -> AppConfig:
        self._config = AppConfig()
        await self._save()
        return self._config

    async def get_weather_city(self) -> str:
        return (await self.get_config()).weather_city

    async def get_weather_country(self) -> str:
        return (await self.get_config()).weather_country

    async def get_holiday_country(self) -> str:
        return (await self.get_config()).holiday_country

    async def set_weather_city(self, city: str) -> None:
        await self.update_config(AppConfigPatch(weather_city=city))

    async def set_weather_country(self, country: str) -> None:
        await self.update_config(AppConfigPatch(weather_country=country))

    async def set_holiday_country(self, country: str) -> None:
        await self.update_config(AppConfigPatch(holiday_country=country))

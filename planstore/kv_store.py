from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Callable

from planstore.errors import StorageUnavailableError

logger = logging.getLogger(__name__)

CATEGORIES_KEY = "categories"
PROJECTS_KEY = "projects"
TASKS_KEY = "tasks"
NOTES_KEY = "notes"
INITIALIZED_KEY = "initialized"
APP_CONFIG_KEY = "app_config"

COLLECTION_KEYS = (CATEGORIES_KEY, PROJECTS_KEY, TASKS_KEY, NOTES_KEY)


def _read_document(path: Path) -> dict:
    if not path.exists():
        return {}
    raw = path.read_text(encoding="utf-8")
    if not raw.strip():
        return {}
    payload = json.loads(raw)
    if not isinstance(payload, dict):
        raise ValueError(f"{path} does not hold a JSON object")
    return payload


def _write_document(path: Path, payload: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_name = None
    try:
        with tempfile.NamedTemporaryFile(
            "w", encoding="utf-8", dir=path.parent, prefix=path.name + ".", suffix=".tmp", delete=False
        ) as handle:
            tmp_name = handle.name
            json.dump(payload, handle, ensure_ascii=False)
        os.replace(tmp_name, path)
    except Exception:
        if tmp_name is not None:
            Path(tmp_name).unlink(missing_ok=True)
        raise


class KeyValueStore:
    """Whole-collection key-value persistence over one JSON document.

    With ``path=None`` the document lives in memory only. Mutations are
    serialized, and the in-memory document only changes once the new
    document is on disk.
    """

    def __init__(self, path: Path | str | None = None):
        self.path = Path(path) if path is not None else None
        self._data: dict[str, Any] = {}
        self._ready = False
        self._init_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()

    def is_ready(self) -> bool:
        return self._ready

    async def init(self) -> None:
        if self._ready:
            return
        async with self._init_lock:
            if self._ready:
                return
            if self.path is not None:
                try:
                    self._data = await asyncio.to_thread(_read_document, self.path)
                except (OSError, ValueError) as exc:
                    raise StorageUnavailableError(f"cannot open key-value store {self.path}: {exc}") from exc
            self._ready = True

    async def _flush(self, document: dict) -> None:
        if self.path is None:
            return
        try:
            await asyncio.to_thread(_write_document, self.path, document)
        except (OSError, TypeError, ValueError) as exc:
            raise StorageUnavailableError(f"cannot write key-value store {self.path}: {exc}") from exc

    async def _commit(self, change: Callable[[dict], bool]) -> None:
        await self.init()
        async with self._write_lock:
            document = dict(self._data)
            if not change(document):
                return
            await self._flush(document)
            self._data = document

    async def get(self, key: str, default: Any = None) -> Any:
        await self.init()
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    async def set(self, key: str, value: Any) -> None:
        value = copy.deepcopy(value)

        def _set(document: dict) -> bool:
            document[key] = value
            return True

        await self._commit(_set)

    async def remove(self, key: str) -> None:
        def _remove(document: dict) -> bool:
            if key not in document:
                return False
            del document[key]
            return True

        await self._commit(_remove)

    async def clear(self) -> None:
        def _clear(document: dict) -> bool:
            document.clear()
            return True

        await self._commit(_clear)

    async def get_collection(self, name: str) -> list:
        value = await self.get(name)
        if not isinstance(value, list):
            if value is not None:
                logger.warning("Collection %s is not a list, treating it as empty", name)
            return []
        return value

    async def set_collection(self, name: str, records: list) -> None:
        await self.set(name, list(records))

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, TypeAdapter, ValidationError

from planstore.errors import MalformedRecordError
from planstore.schemas import Category, Note, NotificationConfig, Project, Task

logger = logging.getLogger(__name__)

EntityT = TypeVar("EntityT", bound=BaseModel)

_NOTIFICATION_ADAPTER: TypeAdapter = TypeAdapter(NotificationConfig)


def _to_int_flag(value) -> int:
    return 1 if value else 0


def _from_int_flag(value) -> bool:
    if isinstance(value, str):
        return value.strip() in {"1", "true", "True"}
    return bool(value)


def _encode_notification(value) -> str | None:
    if value is None:
        return None
    payload = _NOTIFICATION_ADAPTER.dump_python(value, mode="json", by_alias=True)
    return json.dumps(payload, ensure_ascii=False)


def _decode_notification(raw):
    if raw is None or raw == "":
        return None
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as exc:
            raise MalformedRecordError(f"notification config is not JSON: {raw!r}") from exc
    return raw


class RecordCodec(Generic[EntityT]):
    """Maps one entity type to and from both on-disk shapes.

    Fallback records are plain dicts keyed by the camelCase alias of each
    field. Relational rows are dicts keyed by snake_case column names, with
    booleans as 0/1 and nested structures as JSON text.
    """

    def __init__(
        self,
        entity: str,
        model: type[EntityT],
        columns: list[str],
        bool_columns: Iterable[str] = (),
        json_columns: Mapping[str, str] | None = None,
    ):
        self.entity = entity
        self.model = model
        self.columns = columns
        self.bool_columns = set(bool_columns)
        # column name -> attribute name
        self.json_columns = dict(json_columns or {})

    def to_fallback_record(self, entity: EntityT) -> dict:
        return entity.model_dump(mode="json", by_alias=True, exclude_none=True)

    def from_fallback_record(self, record: Any) -> EntityT | None:
        try:
            return self._validate_fallback(record)
        except MalformedRecordError as exc:
            logger.debug("Dropping malformed %s record: %s", self.entity, exc)
            return None

    def _validate_fallback(self, record: Any) -> EntityT:
        if not isinstance(record, Mapping) or not record.get("id"):
            raise MalformedRecordError(f"{self.entity} record without id")
        try:
            return self.model.model_validate(dict(record))
        except ValidationError as exc:
            raise MalformedRecordError(str(exc)) from exc

    def to_relational_row(self, entity: EntityT) -> dict:
        payload = entity.model_dump(mode="json")
        row = {}
        for column in self.columns:
            attribute = self.json_columns.get(column, column)
            value = payload.get(attribute)
            if column in self.json_columns:
                value = _encode_notification(getattr(entity, attribute))
            elif column in self.bool_columns:
                value = _to_int_flag(value)
            row[column] = value
        return row

    def from_relational_row(self, row: Any) -> EntityT | None:
        try:
            return self._validate_relational(row)
        except MalformedRecordError as exc:
            logger.debug("Dropping malformed %s row: %s", self.entity, exc)
            return None

    def _validate_relational(self, row: Any) -> EntityT:
        if not isinstance(row, Mapping) or not row.get("id"):
            raise MalformedRecordError(f"{self.entity} row without id")
        payload = {}
        for column in self.columns:
            value = row.get(column)
            if column in self.json_columns:
                payload[self.json_columns[column]] = _decode_notification(value)
                continue
            if value is None:
                continue
            if column in self.bool_columns:
                value = _from_int_flag(value)
            payload[column] = value
        try:
            return self.model.model_validate(payload)
        except ValidationError as exc:
            raise MalformedRecordError(str(exc)) from exc

    def decode_fallback_records(self, records: Iterable[Any]) -> list[EntityT]:
        decoded = (self.from_fallback_record(record) for record in records or [])
        return [item for item in decoded if item is not None]

    def decode_relational_rows(self, rows: Iterable[Any]) -> list[EntityT]:
        decoded = (self.from_relational_row(row) for row in rows or [])
        return [item for item in decoded if item is not None]


CATEGORY_COLUMNS = ["id", "name", "color", "icon", "created_at"]
PROJECT_COLUMNS = ["id", "name", "category_id", "description", "created_at"]
TASK_COLUMNS = [
    "id",
    "title",
    "description",
    "due_date",
    "start_time",
    "end_time",
    "notification_config",
    "image",
    "project_id",
    "order",
    "completed",
    "created_at",
]
NOTE_COLUMNS = [
    "id",
    "title",
    "content",
    "protected",
    "password_hash",
    "created_at",
    "modified_at",
]

CATEGORY_CODEC: RecordCodec[Category] = RecordCodec("category", Category, CATEGORY_COLUMNS)
PROJECT_CODEC: RecordCodec[Project] = RecordCodec("project", Project, PROJECT_COLUMNS)
TASK_CODEC: RecordCodec[Task] = RecordCodec(
    "task",
    Task,
    TASK_COLUMNS,
    bool_columns={"completed"},
    json_columns={"notification_config": "notification"},
)
NOTE_CODEC: RecordCodec[Note] = RecordCodec(
    "note",
    Note,
    NOTE_COLUMNS,
    bool_columns={"protected"},
)

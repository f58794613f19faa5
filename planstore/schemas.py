from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class _Record(BaseModel):
    # camelCase aliases are the fallback-store key convention
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ThirtyMinutesBefore(_Record):
    kind: Literal["30min"] = "30min"


class OneHourBefore(_Record):
    kind: Literal["1hour"] = "1hour"


class OneDayBefore(_Record):
    kind: Literal["1day"] = "1day"


class CustomReminder(_Record):
    kind: Literal["custom"] = "custom"
    custom_date_time: datetime


NotificationConfig = Annotated[
    Union[ThirtyMinutesBefore, OneHourBefore, OneDayBefore, CustomReminder],
    Field(discriminator="kind"),
]


class Category(_Record):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    color: str = Field(min_length=1)
    icon: str = Field(min_length=1)
    created_at: datetime


class CategoryCreate(_Record):
    name: str = Field(min_length=1)
    color: str = Field(min_length=1)
    icon: str = Field(min_length=1)


class CategoryPatch(_Record):
    name: Optional[str] = None
    color: Optional[str] = None
    icon: Optional[str] = None


class Project(_Record):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    category_id: str = Field(min_length=1)
    description: Optional[str] = None
    created_at: datetime


class ProjectCreate(_Record):
    name: str = Field(min_length=1)
    category_id: str = Field(min_length=1)
    description: Optional[str] = None


class ProjectPatch(_Record):
    name: Optional[str] = None
    category_id: Optional[str] = None
    description: Optional[str] = None


class _TimeWindow(_Record):
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @model_validator(mode="after")
    def _check_window(self):
        if self.start_time is not None and self.end_time is not None:
            if self.end_time <= self.start_time:
                raise ValueError("end_time must be after start_time")
        return self


class Task(_TimeWindow):
    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    description: str = ""
    due_date: datetime
    notification: Optional[NotificationConfig] = None
    image: Optional[str] = None
    project_id: str = Field(min_length=1)
    order: int = 0
    completed: bool = False
    created_at: datetime


class TaskCreate(_TimeWindow):
    title: str = Field(min_length=1)
    description: str = ""
    due_date: datetime
    notification: Optional[NotificationConfig] = None
    image: Optional[str] = None
    project_id: str = Field(min_length=1)


class TaskPatch(_Record):
    title: Optional[str] = None
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    notification: Optional[NotificationConfig] = None
    image: Optional[str] = None
    project_id: Optional[str] = None
    order: Optional[int] = None
    completed: Optional[bool] = None


class Note(_Record):
    id: str = Field(min_length=1)
    title: str
    content: str
    protected: bool = False
    password_hash: Optional[str] = None
    created_at: datetime
    modified_at: datetime

    @model_validator(mode="after")
    def _check_protection(self):
        if self.protected and not self.password_hash:
            raise ValueError("protected note requires a password hash")
        if not self.protected and self.password_hash is not None:
            raise ValueError("unprotected note must not carry a password hash")
        return self


class NoteCreate(_Record):
    title: str
    content: str = ""


class NotePatch(_Record):
    title: Optional[str] = None
    content: Optional[str] = None


class AppConfig(_Record):
    weather_city: str = "Lisbon"
    weather_country: str = "PT"
    holiday_country: str = "PT"


class AppConfigPatch(_Record):
    weather_city: Optional[str] = None
    weather_country: Optional[str] = None
    holiday_country: Optional[str] = None


def patch_values(patch: BaseModel) -> dict:
    """Fields the caller explicitly set, keyed by attribute name."""
    return {name: getattr(patch, name) for name in patch.model_fields_set}

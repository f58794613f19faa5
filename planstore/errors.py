from __future__ import annotations


class PlanstoreError(Exception):
    """Base class for every error raised by the persistence core."""


class NotFoundError(PlanstoreError, LookupError):
    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} {entity_id!r} not found")
        self.entity = entity
        self.entity_id = entity_id


class ReferentialConflictError(PlanstoreError):
    def __init__(self, entity: str, entity_id: str, dependents: list[str]):
        super().__init__(
            f"{entity} {entity_id!r} is still referenced by {len(dependents)} record(s)"
        )
        self.entity = entity
        self.entity_id = entity_id
        self.dependents = dependents


class StorageUnavailableError(PlanstoreError):
    """The selected backend failed to read or write."""


class MalformedRecordError(PlanstoreError, ValueError):
    """A stored record failed decoding. Never escapes a repository read."""


class RecordValidationError(PlanstoreError, ValueError):
    """A create/update would persist an invalid entity."""

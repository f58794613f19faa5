from planstore.data_init import DataInitializer, Planner, open_planner
from planstore.errors import (
    MalformedRecordError,
    NotFoundError,
    PlanstoreError,
    RecordValidationError,
    ReferentialConflictError,
    StorageUnavailableError,
)

__all__ = [
    "DataInitializer",
    "MalformedRecordError",
    "NotFoundError",
    "Planner",
    "PlanstoreError",
    "RecordValidationError",
    "ReferentialConflictError",
    "StorageUnavailableError",
    "open_planner",
]

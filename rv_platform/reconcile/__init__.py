# Public surface of the restore engine package.
from ..status_priority import safe_update, can_upgrade, priority
from ._errors import (
    RestoreError,
    SchemaError,
    ValidationError,
    MissingOverrideError,
    ConcurrentSessionError,
    SessionStateError,
    SnapshotPersistError,
    SnapshotNotFoundError,
    CommitPartialFailure,
)
from ._types import Domain, MergeOptions, MergeResult, Resolution, SchemaVersion, SessionState, Strategy
from ._schema import SNAPSHOT_VERSION, detect_version, migrate, migrate_old_record
from ._differ import diff, diff_dataset
from ._resolver import resolve
from ._validator import validate
from ._safety import SafetySnapshotManager
from ._state_store import JsonDatasetStore, MemoryDatasetStore
from ._session import RestoreSession
from .facade import RestoreEngine

__all__ = [
    "RestoreEngine", "RestoreSession", "SafetySnapshotManager",
    "JsonDatasetStore", "MemoryDatasetStore",
    "Domain", "MergeOptions", "MergeResult", "Resolution", "SchemaVersion", "SessionState", "Strategy",
    "SNAPSHOT_VERSION", "detect_version", "migrate", "migrate_old_record",
    "diff", "diff_dataset", "resolve", "validate",
    "safe_update", "can_upgrade", "priority",
    "RestoreError", "SchemaError", "ValidationError", "MissingOverrideError",
    "ConcurrentSessionError", "SessionStateError", "SnapshotPersistError",
    "SnapshotNotFoundError", "CommitPartialFailure",
]

# rv_platform/reconcile/_errors.py
# error taxonomy for the restore engine.
# Copyright (c) 2025-2026 ReelVault
from __future__ import annotations

from typing import Any


class RestoreError(RuntimeError):
    kind = "RestoreError"
    fatal = True

    def __init__(self, message: str, *, domain: str | None = None, key: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.domain = domain
        self.key = key

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.domain is not None:
            out["domain"] = self.domain
        if self.key is not None:
            out["key"] = self.key
        return out


class SchemaError(RestoreError):
    kind = "SchemaError"
    fatal = False


class ValidationError(RestoreError):
    kind = "ValidationError"

    def __init__(self, message: str, *, domain: str, key: str | None = None, rule: str) -> None:
        super().__init__(message, domain=domain, key=key)
        self.rule = rule

    def to_dict(self) -> dict[str, Any]:
        out = super().to_dict()
        out["rule"] = self.rule
        return out


class MissingOverrideError(RestoreError):
    kind = "MissingOverrideError"


class ConcurrentSessionError(RestoreError):
    kind = "ConcurrentSessionError"


class SessionStateError(RestoreError):
    kind = "SessionStateError"


class SnapshotPersistError(RestoreError):
    kind = "SnapshotPersistError"


class SnapshotNotFoundError(RestoreError):
    kind = "SnapshotNotFoundError"


class CommitPartialFailure(RestoreError):
    kind = "CommitPartialFailure"

    def __init__(self, message: str, *, written: list[str], failed: dict[str, str]) -> None:
        super().__init__(message, domain=",".join(sorted(failed)) or None)
        self.written = list(written)
        self.failed = dict(failed)

    def to_dict(self) -> dict[str, Any]:
        out = super().to_dict()
        out["written"] = list(self.written)
        out["failed"] = dict(self.failed)
        return out


__all__ = [
    "RestoreError",
    "SchemaError",
    "ValidationError",
    "MissingOverrideError",
    "ConcurrentSessionError",
    "SessionStateError",
    "SnapshotPersistError",
    "SnapshotNotFoundError",
    "CommitPartialFailure",
]

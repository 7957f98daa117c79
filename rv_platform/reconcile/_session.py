# rv_platform/reconcile/_session.py
# restore session: one preview/apply round trip and its state machine.
# Copyright (c) 2025-2026 ReelVault
from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

from ._errors import SessionStateError
from ._schema import SchemaInfo
from ._types import Dataset, DiffResult, ResolvedDomain, SessionState

# allowed forward moves; ABORTED is reachable from every non-final state
_NEXT: dict[SessionState, frozenset[SessionState]] = {
    SessionState.IDLE: frozenset({SessionState.PREVIEWING}),
    SessionState.PREVIEWING: frozenset({SessionState.RESOLVING}),
    SessionState.RESOLVING: frozenset({SessionState.VALIDATING}),
    SessionState.VALIDATING: frozenset({SessionState.SNAPSHOTTING_LOCAL}),
    SessionState.SNAPSHOTTING_LOCAL: frozenset({SessionState.COMMITTING}),
    SessionState.COMMITTING: frozenset({SessionState.DONE}),
    SessionState.DONE: frozenset(),
    SessionState.ABORTED: frozenset(),
}
FINAL_STATES = frozenset({SessionState.DONE, SessionState.ABORTED})


@dataclass
class RestoreSession:
    """Everything one restore knows; nothing of it lives in module state."""

    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    source: str = ""
    state: SessionState = SessionState.IDLE
    created_ms: int = field(default_factory=lambda: int(time.time() * 1000))
    raw: Any = None
    local: Dataset = field(default_factory=dict)
    remote: Dataset = field(default_factory=dict)
    schema: Optional[SchemaInfo] = None
    diff: Optional[DiffResult] = None
    resolved: dict[str, ResolvedDomain] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    snapshot_id: Optional[str] = None
    cancel_requested: bool = False
    superseded: bool = False
    history: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.history:
            self.history.append(self.state.value)

    @property
    def previewed(self) -> bool:
        return self.diff is not None

    @property
    def finished(self) -> bool:
        return self.state in FINAL_STATES

    def advance(self, to: SessionState) -> None:
        if to is SessionState.ABORTED:
            if self.state is SessionState.DONE:
                raise SessionStateError(f"session {self.id} already finished")
        elif to not in _NEXT[self.state]:
            raise SessionStateError(f"session {self.id}: cannot move from {self.state.value} to {to.value}")
        self.state = to
        self.history.append(to.value)

    def abort(self) -> None:
        if self.state is not SessionState.ABORTED:
            self.advance(SessionState.ABORTED)

    def warn(self, msg: str) -> None:
        if msg and msg not in self.warnings:
            self.warnings.append(msg)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "source": self.source,
            "state": self.state.value,
            "created_ms": self.created_ms,
            "warnings": list(self.warnings),
            "snapshot_id": self.snapshot_id,
        }
        if self.schema is not None:
            out["schema"] = {"version": self.schema.version.value, "declared": self.schema.declared}
        if self.diff is not None:
            out["diff"] = self.diff.to_dict()
        return out


__all__ = ["RestoreSession", "FINAL_STATES"]

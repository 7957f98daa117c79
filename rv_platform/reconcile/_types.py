# rv_platform/reconcile/_types.py
# types and protocols for the restore engine.
# Copyright (c) 2025-2026 ReelVault
from __future__ import annotations

from dataclasses import dataclass, field
from collections.abc import Mapping
from enum import Enum
from typing import Any, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..config_base import RESTORE_DOMAIN_GROUPS


class Domain(str, Enum):
    VIDEO_RECORDS = "videoRecords"
    ACTOR_RECORDS = "actorRecords"
    SUBSCRIPTIONS = "subscriptions"
    WORK_RECORDS = "workRecords"
    SETTINGS = "settings"
    NEW_WORKS_CONFIG = "newWorksConfig"
    USER_PROFILE = "userProfile"
    LOGS = "logs"
    IMPORT_STATS = "importStats"


KEYED_DOMAINS: tuple[Domain, ...] = (
    Domain.VIDEO_RECORDS,
    Domain.ACTOR_RECORDS,
    Domain.SUBSCRIPTIONS,
    Domain.WORK_RECORDS,
)
BLOB_DOMAINS: tuple[Domain, ...] = (
    Domain.SETTINGS,
    Domain.NEW_WORKS_CONFIG,
    Domain.USER_PROFILE,
    Domain.IMPORT_STATS,
)
ALL_DOMAINS: tuple[Domain, ...] = (*KEYED_DOMAINS, *BLOB_DOMAINS, Domain.LOGS)

# UI selection group -> storage domains
DOMAIN_GROUPS: dict[str, tuple[Domain, ...]] = {
    "settings": (Domain.SETTINGS,),
    "videoRecords": (Domain.VIDEO_RECORDS,),
    "actorRecords": (Domain.ACTOR_RECORDS,),
    "newWorks": (Domain.SUBSCRIPTIONS, Domain.WORK_RECORDS, Domain.NEW_WORKS_CONFIG),
    "logs": (Domain.LOGS,),
    "importStats": (Domain.IMPORT_STATS,),
    "userProfile": (Domain.USER_PROFILE,),
}


class SchemaVersion(str, Enum):
    CURRENT = "current"
    LEGACY = "legacy"
    UNKNOWN = "unknown"


class Strategy(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"
    SMART = "smart"
    MANUAL = "manual"


class Resolution(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"
    MERGE = "merge"


_LEGACY_STRATEGIES: dict[str, str] = {
    "local-priority": "local",
    "cloud-priority": "remote",
    "custom": "manual",
}


class SessionState(str, Enum):
    IDLE = "idle"
    PREVIEWING = "previewing"
    RESOLVING = "resolving"
    VALIDATING = "validating"
    SNAPSHOTTING_LOCAL = "snapshotting_local"
    COMMITTING = "committing"
    DONE = "done"
    ABORTED = "aborted"


# A preview is rejected while another session sits in one of these.
IN_FLIGHT_STATES: frozenset[SessionState] = frozenset({
    SessionState.RESOLVING,
    SessionState.VALIDATING,
    SessionState.SNAPSHOTTING_LOCAL,
    SessionState.COMMITTING,
})

Dataset = dict[str, Any]
KeyedMap = dict[str, dict[str, Any]]


class DatasetStore(Protocol):
    async def get(self, domain: str) -> Any: ...
    async def put(self, domain: str, value: Any) -> None: ...


@dataclass
class Conflict:
    key: str
    local: dict[str, Any]
    remote: dict[str, Any]
    differences: list[str]
    recommendation: Resolution

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "local": self.local,
            "remote": self.remote,
            "differences": list(self.differences),
            "recommendation": self.recommendation.value,
        }


@dataclass
class DomainDiff:
    domain: Domain
    local_only: KeyedMap = field(default_factory=dict)
    remote_only: KeyedMap = field(default_factory=dict)
    identical: KeyedMap = field(default_factory=dict)
    conflicts: dict[str, Conflict] = field(default_factory=dict)

    @property
    def summary(self) -> dict[str, int]:
        return {
            "local_only": len(self.local_only),
            "remote_only": len(self.remote_only),
            "identical": len(self.identical),
            "conflicts": len(self.conflicts),
            "total_local": len(self.local_only) + len(self.identical) + len(self.conflicts),
            "total_remote": len(self.remote_only) + len(self.identical) + len(self.conflicts),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "domain": self.domain.value,
            "summary": self.summary,
            "local_only": sorted(self.local_only),
            "remote_only": sorted(self.remote_only),
            "identical": sorted(self.identical),
            "conflicts": [c.to_dict() for _, c in sorted(self.conflicts.items())],
        }


@dataclass
class BlobDiff:
    domain: Domain
    local: Any = None
    remote: Any = None
    changed: bool = False
    differences: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "domain": self.domain.value,
            "changed": self.changed,
            "differences": list(self.differences),
            "has_local": self.local is not None,
            "has_remote": self.remote is not None,
        }


@dataclass
class LogsDiff:
    local_count: int = 0
    remote_count: int = 0
    new_entries: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "domain": Domain.LOGS.value,
            "local_count": self.local_count,
            "remote_count": self.remote_count,
            "new_entries": self.new_entries,
        }


@dataclass
class DiffResult:
    keyed: dict[Domain, DomainDiff] = field(default_factory=dict)
    blobs: dict[Domain, BlobDiff] = field(default_factory=dict)
    logs: LogsDiff = field(default_factory=LogsDiff)

    def conflict_count(self) -> int:
        return sum(len(d.conflicts) for d in self.keyed.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "keyed": {d.value: dd.to_dict() for d, dd in self.keyed.items()},
            "blobs": {d.value: bd.to_dict() for d, bd in self.blobs.items()},
            "logs": self.logs.to_dict(),
            "conflicts": self.conflict_count(),
        }


@dataclass
class DomainSummary:
    added: int = 0
    updated: int = 0
    kept: int = 0
    removed: int = 0
    total: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "added": self.added,
            "updated": self.updated,
            "kept": self.kept,
            "removed": self.removed,
            "total": self.total,
        }


@dataclass
class ResolvedDomain:
    domain: Domain
    value: Any
    summary: DomainSummary
    resolutions: dict[str, Resolution] = field(default_factory=dict)


class MergeOptions(BaseModel):
    """Caller-supplied restore options; accepts camelCase keys as well."""

    model_config = ConfigDict(populate_by_name=True)

    strategy: Strategy = Strategy.SMART
    restore_domains: dict[str, bool] = Field(
        default_factory=lambda: {name: True for name in RESTORE_DOMAIN_GROUPS},
        alias="restoreDomains",
    )
    overrides: dict[str, Resolution] = Field(default_factory=dict)
    remote_exclusive: bool = Field(default=False, alias="remoteExclusive")

    # dashboard names from older clients
    @field_validator("strategy", mode="before")
    @classmethod
    def _legacy_strategy(cls, v: Any) -> Any:
        if isinstance(v, str):
            return _LEGACY_STRATEGIES.get(v.strip().lower(), v.strip().lower())
        return v

    @field_validator("overrides", mode="before")
    @classmethod
    def _legacy_resolutions(cls, v: Any) -> Any:
        if isinstance(v, Mapping):
            return {str(k): ("remote" if r == "cloud" else r) for k, r in v.items()}
        return v

    @field_validator("restore_domains")
    @classmethod
    def _known_groups(cls, v: dict[str, bool]) -> dict[str, bool]:
        unknown = sorted(set(v) - set(DOMAIN_GROUPS))
        if unknown:
            raise ValueError(f"unknown restore domains: {', '.join(unknown)}")
        return {name: bool(v.get(name, False)) for name in RESTORE_DOMAIN_GROUPS}

    def selected_domains(self) -> list[Domain]:
        out: list[Domain] = []
        for name, on in self.restore_domains.items():
            if on:
                out.extend(DOMAIN_GROUPS[name])
        return [d for d in ALL_DOMAINS if d in out]

    def override_for(self, domain: Domain, key: str) -> Optional[Resolution]:
        return self.overrides.get(f"{domain.value}:{key}") or self.overrides.get(key)


@dataclass
class SafetySnapshot:
    id: str
    created_at: str
    created_ms: int
    label: str
    source: str
    data: Dataset

    def meta(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at,
            "created_ms": self.created_ms,
            "label": self.label,
            "source": self.source,
            "domains": sorted(self.data.keys()),
        }


@dataclass
class MergeResult:
    success: bool
    summary: dict[str, DomainSummary] = field(default_factory=dict)
    merged_data: Dataset = field(default_factory=dict)
    error: Optional[dict[str, Any]] = None
    warnings: list[str] = field(default_factory=list)
    snapshot_id: Optional[str] = None
    session_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "success": self.success,
            "summary": {k: v.to_dict() for k, v in self.summary.items()},
            "warnings": list(self.warnings),
            "snapshot_id": self.snapshot_id,
            "session_id": self.session_id,
        }
        if self.error is not None:
            out["error"] = dict(self.error)
        return out


def as_keyed_map(value: Any) -> KeyedMap:
    if not isinstance(value, Mapping):
        return {}
    out: KeyedMap = {}
    for k, v in value.items():
        if not k or not isinstance(v, Mapping):
            continue
        out[str(k)] = dict(v)
    return out

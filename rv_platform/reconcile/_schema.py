# rv_platform/reconcile/_schema.py
# snapshot version detection and legacy migration.
# Copyright (c) 2025-2026 ReelVault
from __future__ import annotations

import copy
import time
from dataclasses import dataclass, field
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Optional

from packaging.version import InvalidVersion, Version

from _logging import log

from ..records import ACTOR_FIELDS, VIDEO_FIELDS, VersionedRecord
from ..status_priority import BROWSED, VIEWED, WANT, safe_update
from ._errors import SchemaError
from ._types import Dataset, Domain, SchemaVersion, as_keyed_map

SNAPSHOT_VERSION = "2.1"

# Legacy literal -> current status. "unviewed" meant seen-but-not-watched.
_STATUS_MAP: dict[str, str] = {
    "viewed": "viewed",
    "want": "want",
    "browsed": "browsed",
    "untracked": "untracked",
    "unviewed": "browsed",
}
_LEGACY_ONLY_STATUSES = frozenset({"unviewed"})
_LEGACY_COLLECTIONS = ("viewed", "browsed", "want")
_SNAPSHOT_KEYS = frozenset({
    "version", "timestamp", "data", "actorRecords", "newWorks", "settings",
    "userProfile", "logs", "importStats", "viewed", "browsed", "want",
})


@dataclass
class SchemaInfo:
    version: SchemaVersion
    declared: Optional[str] = None
    warnings: list[str] = field(default_factory=list)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _iso_from_ms(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def _first_record(raw: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
    for v in raw.values():
        return v if isinstance(v, Mapping) else None
    return None


def _keyed_records(value: Any) -> Mapping[str, Any]:
    # v1.0 exports ship "data" as a list of records carrying their own id
    if isinstance(value, Mapping):
        return value
    if isinstance(value, list):
        return {str(r["id"]): r for r in value if isinstance(r, Mapping) and r.get("id")}
    return {}


def _legacy_stamp(rec: Mapping[str, Any]) -> Optional[int]:
    ts = rec.get("timestamp")
    if isinstance(ts, (int, float)) and not isinstance(ts, bool):
        return int(ts)
    return None


def _looks_legacy(rec: Mapping[str, Any]) -> bool:
    if rec.get("status") in _LEGACY_ONLY_STATUSES:
        return True
    return "createdAt" not in rec and "updatedAt" not in rec


def _needs_migration(rec: Any) -> bool:
    if not isinstance(rec, Mapping):
        return False
    if rec.get("status") in _LEGACY_ONLY_STATUSES:
        return True
    return _legacy_stamp(rec) is not None and rec.get("createdAt") is None and rec.get("updatedAt") is None


def detect_version(raw: Any) -> SchemaVersion:
    if not isinstance(raw, Mapping) or not raw:
        return SchemaVersion.UNKNOWN

    if raw.get("version") or raw.get("timestamp"):
        return SchemaVersion.CURRENT

    if any(isinstance(raw.get(k), Mapping) for k in _LEGACY_COLLECTIONS):
        return SchemaVersion.LEGACY

    data = raw.get("data")
    if isinstance(data, (Mapping, list)):
        rec = _first_record(_keyed_records(data))
        return SchemaVersion.LEGACY if rec is not None and _looks_legacy(rec) else SchemaVersion.CURRENT

    rec = _first_record(raw)
    if rec is not None:
        return SchemaVersion.LEGACY if _looks_legacy(rec) else SchemaVersion.CURRENT

    return SchemaVersion.UNKNOWN


def _parse_version(v: Any) -> Optional[Version]:
    try:
        return Version(str(v).strip().lstrip("vV"))
    except InvalidVersion:
        return None


def inspect_schema(raw: Any) -> SchemaInfo:
    info = SchemaInfo(version=detect_version(raw))
    if isinstance(raw, Mapping) and raw.get("version") not in (None, ""):
        info.declared = str(raw.get("version"))
        parsed = _parse_version(info.declared)
        if parsed is None:
            info.warnings.append(f"snapshot declares an unparseable version {info.declared!r}")
        elif parsed > Version(SNAPSHOT_VERSION):
            info.warnings.append(
                f"snapshot version {info.declared} is newer than {SNAPSHOT_VERSION}; unknown fields are kept as-is"
            )

    if info.version is SchemaVersion.UNKNOWN:
        err = SchemaError("unrecognized snapshot layout; importing without migration")
        info.warnings.append(err.message)
    return info


def migrate_old_record(
    record: Mapping[str, Any],
    now: Optional[int] = None,
    *,
    key: Optional[str] = None,
    default_status: str = BROWSED,
) -> dict[str, Any]:
    """Rewrite one legacy video record into the current shape.

    Status literals, ``title`` and the list fields are normalized on every
    pass; timestamps are only backfilled when absent, preferring a v1.0
    per-record ``timestamp`` over ``now``. Unknown fields ride along in the
    extension bag, so a record already in the current shape comes back as
    an equal copy.
    """
    vr = VersionedRecord.split(copy.deepcopy(dict(record)), VIDEO_FIELDS)

    rid = vr.get("id") or key
    if rid:
        vr.set("id", str(rid))
    vr.set("title", vr.get("title") or rid)
    vr.set("status", _STATUS_MAP.get(str(vr.get("status") or ""), default_status))

    for name in ("tags", "listIds"):
        cur = vr.get(name)
        vr.set(name, list(cur) if isinstance(cur, (list, tuple, set)) else [])

    created = vr.get("createdAt")
    updated = vr.get("updatedAt")
    if created is None and updated is None:
        stamp = _legacy_stamp(vr.extensions)
        if stamp is not None:
            vr.extensions.pop("timestamp", None)
        else:
            stamp = _now_ms() if now is None else int(now)
        created = updated = stamp
    elif created is None:
        created = updated
    elif updated is None:
        updated = max(_now_ms() if now is None else int(now), created)
    vr.set("createdAt", created)
    vr.set("updatedAt", updated)
    return vr.to_raw()


def _migrate_actor(record: Mapping[str, Any], key: str) -> dict[str, Any]:
    vr = VersionedRecord.split(copy.deepcopy(dict(record)), ACTOR_FIELDS)
    if not vr.get("id"):
        vr.set("id", key)
    aliases = vr.get("aliases")
    if isinstance(aliases, str):
        aliases = [a.strip() for a in aliases.split(",") if a.strip()]
    vr.set("aliases", list(aliases) if isinstance(aliases, (list, tuple, set)) else [])
    for name in ("gender", "category"):
        if vr.get(name) in (None, ""):
            vr.set(name, "unknown")
    return vr.to_raw()


def _records_source(raw: Mapping[str, Any]) -> Mapping[str, Any]:
    if isinstance(raw.get("data"), (Mapping, list)):
        return _keyed_records(raw["data"])
    if isinstance(raw.get("viewed"), Mapping):
        return raw["viewed"]
    if any(k in raw for k in _SNAPSHOT_KEYS):
        return {}
    return {k: v for k, v in raw.items() if isinstance(v, Mapping)}


def migrate(raw: Any, *, now: Optional[int] = None, collision: str = "skip") -> Any:
    """Normalize a snapshot to the current layout.

    Unrecognized snapshots come back as deep copies. Current ones are copied
    with a list-form ``data`` keyed by id and any legacy-shaped record in it
    migrated; legacy ones are rewritten. ``migrate(migrate(x)) == migrate(x)``.
    """
    version = detect_version(raw)
    if version is SchemaVersion.UNKNOWN:
        return copy.deepcopy(dict(raw)) if isinstance(raw, Mapping) else copy.deepcopy(raw)

    ts = _now_ms() if now is None else int(now)
    if version is SchemaVersion.CURRENT:
        snap = copy.deepcopy(dict(raw))
        if isinstance(snap.get("data"), list):
            snap["data"] = dict(_keyed_records(snap["data"]))
        recs = snap.get("data")
        if isinstance(recs, dict):
            stale = [k for k, rec in recs.items() if _needs_migration(rec)]
            for k in stale:
                recs[k] = migrate_old_record(recs[k], ts, key=str(k))
            if stale:
                log("migrated legacy records in current snapshot", level="INFO", module="RESTORE", extra={"count": len(stale)})
        return snap

    log("migrating legacy snapshot", level="INFO", module="RESTORE")

    actors = {k: _migrate_actor(v, k) for k, v in as_keyed_map(raw.get("actorRecords")).items()}
    out: dict[str, Any] = {
        "version": SNAPSHOT_VERSION,
        "timestamp": _iso_from_ms(ts),
        "data": {},
        "actorRecords": actors,
        "settings": copy.deepcopy(raw.get("settings")),
        "userProfile": copy.deepcopy(raw.get("userProfile")),
        "logs": copy.deepcopy(raw.get("logs")) if isinstance(raw.get("logs"), list) else [],
        "importStats": copy.deepcopy(raw.get("importStats")),
        "newWorks": copy.deepcopy(raw.get("newWorks")) if isinstance(raw.get("newWorks"), Mapping) else {},
    }

    data: dict[str, Any] = out["data"]
    primary_default = VIEWED if isinstance(raw.get("viewed"), Mapping) and not isinstance(raw.get("data"), (Mapping, list)) else BROWSED
    for k, rec in _records_source(raw).items():
        if isinstance(rec, Mapping):
            data[str(k)] = migrate_old_record(rec, ts, key=str(k), default_status=primary_default)

    for coll, status in (("browsed", BROWSED), ("want", WANT)):
        src = raw.get(coll)
        if not isinstance(src, Mapping):
            continue
        added = 0
        for k, rec in src.items():
            if not isinstance(rec, Mapping):
                continue
            k = str(k)
            if k in data:
                if collision == "priority":
                    data[k]["status"] = safe_update(data[k].get("status"), status)
                continue
            migrated = migrate_old_record(rec, ts, key=k, default_status=status)
            migrated["status"] = status
            data[k] = migrated
            added += 1
        if added:
            log(f"migrated legacy '{coll}' collection", level="INFO", module="RESTORE", extra={"count": added})

    log(
        "legacy migration finished",
        level="INFO",
        module="RESTORE",
        extra={"records": len(data), "actors": len(actors)},
    )
    return out


def dataset_from_snapshot(snap: Any) -> Dataset:
    """Project a normalized snapshot onto storage domains."""
    raw: Mapping[str, Any] = snap if isinstance(snap, Mapping) else {}
    nw_raw = raw.get("newWorks")
    nw: Mapping[str, Any] = nw_raw if isinstance(nw_raw, Mapping) else {}
    logs = raw.get("logs")

    return {
        Domain.VIDEO_RECORDS.value: as_keyed_map(_records_source(raw)),
        Domain.ACTOR_RECORDS.value: as_keyed_map(raw.get("actorRecords")),
        Domain.SUBSCRIPTIONS.value: as_keyed_map(nw.get("subscriptions")),
        Domain.WORK_RECORDS.value: as_keyed_map(nw.get("records")),
        Domain.SETTINGS.value: copy.deepcopy(raw.get("settings")),
        Domain.NEW_WORKS_CONFIG.value: copy.deepcopy(nw.get("config")),
        Domain.USER_PROFILE.value: copy.deepcopy(raw.get("userProfile")),
        Domain.LOGS.value: copy.deepcopy(list(logs)) if isinstance(logs, list) else [],
        Domain.IMPORT_STATS.value: copy.deepcopy(raw.get("importStats")),
    }


def normalize_snapshot(raw: Any, *, now: Optional[int] = None, collision: str = "skip") -> tuple[Dataset, SchemaInfo]:
    info = inspect_schema(raw)
    for w in info.warnings:
        log(w, level="WARN", module="RESTORE")
    migrated = migrate(raw, now=now, collision=collision)
    return dataset_from_snapshot(migrated), info


__all__ = [
    "SNAPSHOT_VERSION",
    "SchemaInfo",
    "detect_version",
    "inspect_schema",
    "migrate_old_record",
    "migrate",
    "dataset_from_snapshot",
    "normalize_snapshot",
]

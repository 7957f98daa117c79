# rv_platform/reconcile/_safety.py
# pre-merge safety backups of the local dataset.
# Copyright (c) 2025-2026 ReelVault
from __future__ import annotations

import asyncio
import json
import os
import re
import time
import uuid
from collections.abc import Mapping
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from ._errors import SnapshotNotFoundError, SnapshotPersistError
from ._types import Dataset, SafetySnapshot

BACKUP_KIND = "restore_backup"
_ID_RE = re.compile(r"^[0-9]{8}T[0-9]{15}Z_[0-9a-f]{6}$")


def _safe_label(label: str) -> str:
    s = re.sub(r"[^a-zA-Z0-9._ -]+", "", str(label or "").strip())
    s = re.sub(r"\s+", " ", s).strip()
    return s[:60] if s else "pre-restore"


def _write_json_atomic(path: Path, data: Mapping[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + f".tmp.{uuid.uuid4().hex[:8]}")
    tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False, sort_keys=False), encoding="utf-8")
    os.replace(tmp, path)


class SafetySnapshotManager:
    """Full copies of the local dataset taken right before a commit.

    Ids sort by capture time, so the newest snapshot is the largest id.
    """

    def __init__(self, base_path: Path) -> None:
        self.base_path = Path(base_path)
        self._last_ns = 0

    def _next_ns(self) -> int:
        ns = max(time.time_ns(), self._last_ns + 1)
        self._last_ns = ns
        return ns

    def _path(self, snapshot_id: str) -> Path:
        if not _ID_RE.match(str(snapshot_id or "")):
            raise SnapshotNotFoundError(f"invalid snapshot id: {snapshot_id!r}")
        return self.base_path / f"{snapshot_id}.json"

    def _capture(self, data: Dataset, label: str, source: str) -> SafetySnapshot:
        ns = self._next_ns()
        ts = datetime.fromtimestamp(ns // 1_000_000_000, tz=timezone.utc).replace(microsecond=(ns // 1000) % 1_000_000)
        sid = f"{ts.strftime('%Y%m%dT%H%M%S')}{ns % 1_000_000_000:09d}Z_{uuid.uuid4().hex[:6]}"
        snap = SafetySnapshot(
            id=sid,
            created_at=ts.isoformat().replace("+00:00", "Z"),
            created_ms=ns // 1_000_000,
            label=_safe_label(label),
            source=str(source or ""),
            data=data,
        )
        payload = {"kind": BACKUP_KIND, **snap.meta(), "data": data}
        try:
            _write_json_atomic(self._path(sid), payload)
        except (OSError, TypeError, ValueError) as e:
            raise SnapshotPersistError(f"could not write safety snapshot: {e}") from e
        return snap

    def _load(self, snapshot_id: str) -> SafetySnapshot:
        p = self._path(snapshot_id)
        if not p.exists():
            raise SnapshotNotFoundError(f"safety snapshot not found: {snapshot_id}")
        try:
            raw = json.loads(p.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise SnapshotNotFoundError(f"safety snapshot unreadable: {snapshot_id}: {e}") from e
        if not isinstance(raw, dict) or raw.get("kind") != BACKUP_KIND or not isinstance(raw.get("data"), dict):
            raise SnapshotNotFoundError(f"not a safety snapshot: {snapshot_id}")
        return SafetySnapshot(
            id=str(raw.get("id") or snapshot_id),
            created_at=str(raw.get("created_at") or ""),
            created_ms=int(raw.get("created_ms") or 0),
            label=str(raw.get("label") or ""),
            source=str(raw.get("source") or ""),
            data=raw["data"],
        )

    def _ids(self) -> list[str]:
        if not self.base_path.is_dir():
            return []
        ids = [p.stem for p in self.base_path.glob("*.json") if _ID_RE.match(p.stem)]
        return sorted(ids, reverse=True)

    def _list(self) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for sid in self._ids():
            try:
                out.append(self._load(sid).meta())
            except SnapshotNotFoundError:
                continue
        return out

    def _discard(self, snapshot_id: str) -> bool:
        p = self._path(snapshot_id)
        try:
            p.unlink()
        except FileNotFoundError:
            return False
        return True

    def _prune(self, keep: int) -> list[str]:
        keep = max(0, int(keep))
        removed: list[str] = []
        for sid in self._ids()[keep:]:
            if self._discard(sid):
                removed.append(sid)
        return removed

    async def capture(self, data: Dataset, *, label: str = "pre-restore", source: str = "") -> SafetySnapshot:
        return await asyncio.to_thread(self._capture, data, label, source)

    async def load(self, snapshot_id: str) -> SafetySnapshot:
        return await asyncio.to_thread(self._load, snapshot_id)

    async def latest(self) -> Optional[SafetySnapshot]:
        ids = await asyncio.to_thread(self._ids)
        return await self.load(ids[0]) if ids else None

    async def discard(self, snapshot_id: str) -> bool:
        return await asyncio.to_thread(self._discard, snapshot_id)

    async def list_snapshots(self) -> list[dict[str, Any]]:
        return await asyncio.to_thread(self._list)

    async def prune(self, keep: int) -> list[str]:
        return await asyncio.to_thread(self._prune, keep)


__all__ = ["BACKUP_KIND", "SafetySnapshotManager"]

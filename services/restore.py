# services/restore.py
# ReelVault - restore-from-backup service (one engine per process)
# Copyright (c) 2025-2026 ReelVault
from __future__ import annotations

import copy
from collections import OrderedDict, deque
from collections.abc import Callable, Mapping
from typing import Any

import json

from _logging import log
from rv_platform.config_base import DEFAULT_CFG, load_config, restore_settings, save_config, storage_dir
from rv_platform.reconcile import (
    JsonDatasetStore,
    RestoreEngine,
    RestoreSession,
    SafetySnapshotManager,
)

_MAX_SESSIONS = 16
_MAX_EVENTS = 200


class RestoreService:
    """Binds the engine to the JSON store and keeps sessions addressable by id."""

    def __init__(self, cfg: Mapping[str, Any]) -> None:
        self.cfg = dict(cfg or {})
        self.events: deque[dict[str, Any]] = deque(maxlen=_MAX_EVENTS)
        self.sessions: OrderedDict[str, RestoreSession] = OrderedDict()
        self.engine = RestoreEngine(
            store=JsonDatasetStore(storage_dir(self.cfg, "dataset_dir")),
            safety=SafetySnapshotManager(storage_dir(self.cfg, "safety_dir")),
            config=self.cfg,
            on_progress=self._on_progress,
        )

    def _on_progress(self, line: str) -> None:
        try:
            ev = json.loads(line)
        except ValueError:
            ev = {"event": "info", "msg": line}
        self.events.append(ev if isinstance(ev, dict) else {"event": "info", "msg": line})

    def _remember(self, session: RestoreSession) -> None:
        self.sessions[session.id] = session
        while len(self.sessions) > _MAX_SESSIONS:
            self.sessions.popitem(last=False)

    def session(self, session_id: str) -> RestoreSession:
        sid = str(session_id or "").strip()
        if not sid:
            raise ValueError("session id is required")
        s = self.sessions.get(sid)
        if s is None:
            raise KeyError(f"unknown restore session: {sid}")
        return s

    async def preview(self, snapshot: Any, *, source: str = "") -> dict[str, Any]:
        if not isinstance(snapshot, Mapping):
            raise ValueError("snapshot must be a JSON object")
        session = await self.engine.preview(snapshot, source=source)
        self._remember(session)
        return session.to_dict()

    async def apply(self, session_id: str, options: Mapping[str, Any] | None = None) -> dict[str, Any]:
        session = self.session(session_id)
        res = await self.engine.apply(session, options)
        out = res.to_dict()
        out["state"] = session.state.value
        return out

    def cancel(self, session_id: str) -> dict[str, Any]:
        return self.engine.cancel(self.session(session_id)).to_dict()

    async def confirm(self, session_id: str) -> list[str]:
        return await self.engine.confirm(self.session(session_id))

    async def rollback(self, snapshot_id: str | None = None) -> dict[str, Any]:
        return await self.engine.rollback(snapshot_id or None)

    async def list_backups(self) -> list[dict[str, Any]]:
        return await self.engine.list_snapshots()

    async def delete_backup(self, snapshot_id: str) -> None:
        await self.engine.delete_snapshot(snapshot_id)

    async def cleanup(self, keep: int | None = None) -> list[str]:
        return await self.engine.cleanup(keep)

    def recent_events(self, limit: int = 50) -> list[dict[str, Any]]:
        n = max(1, int(limit))
        return list(self.events)[-n:]

    def settings(self) -> dict[str, Any]:
        return copy.deepcopy(self.engine.settings)

    def update_settings(self, patch: Mapping[str, Any]) -> dict[str, Any]:
        """Merge ``patch`` into the restore section, apply it and persist config.json."""
        unknown = sorted(set(patch) - set(DEFAULT_CFG["restore"]))
        if unknown:
            raise ValueError(f"unknown restore setting(s): {', '.join(unknown)}")
        cfg = copy.deepcopy(self.cfg)
        section = dict(cfg.get("restore") or {})
        for k, v in patch.items():
            if k == "domains" and isinstance(v, Mapping):
                section["domains"] = {**dict(section.get("domains") or {}), **dict(v)}
            else:
                section[k] = v
        cfg["restore"] = section
        cfg["restore"] = restore_settings(cfg)

        self.engine.reconfigure(cfg)
        save_config(cfg)
        self.cfg = cfg
        log("restore settings saved", level="INFO", module="RESTORE", extra={"keys": sorted(patch)})
        return self.settings()


_SERVICE: RestoreService | None = None


def get_service(loader: Callable[[], dict[str, Any]] = load_config) -> RestoreService:
    global _SERVICE
    if _SERVICE is None:
        _SERVICE = RestoreService(loader())
        log("restore service ready", level="DEBUG", module="RESTORE")
    return _SERVICE


def reset_service() -> None:
    global _SERVICE
    _SERVICE = None


__all__ = ["RestoreService", "get_service", "reset_service"]

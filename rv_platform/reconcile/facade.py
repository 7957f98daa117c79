# rv_platform/reconcile/facade.py
# restore engine facade: preview, apply, rollback and snapshot housekeeping.
# Copyright (c) 2025-2026 ReelVault
from __future__ import annotations

import copy
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Optional

from _logging import log as _root_log

from ..config_base import restore_settings
from ._differ import diff_dataset
from ._errors import (
    CommitPartialFailure,
    ConcurrentSessionError,
    RestoreError,
    SessionStateError,
    SnapshotNotFoundError,
    SnapshotPersistError,
)
from ._logging import Emitter
from ._resolver import resolve, resolve_blob, resolve_logs
from ._safety import SafetySnapshotManager
from ._schema import normalize_snapshot
from ._session import RestoreSession
from ._state_store import load_dataset
from ._types import (
    BLOB_DOMAINS,
    IN_FLIGHT_STATES,
    KEYED_DOMAINS,
    Dataset,
    DatasetStore,
    Domain,
    MergeOptions,
    MergeResult,
    ResolvedDomain,
    SessionState,
)
from ._validator import validate

__all__ = ["RestoreEngine"]

log = _root_log.child("RESTORE")


@dataclass
class RestoreEngine:
    store: DatasetStore
    safety: SafetySnapshotManager
    config: Mapping[str, Any] = field(default_factory=dict)
    on_progress: Callable[[str], None] | None = None

    settings: dict[str, Any] = field(init=False, default_factory=dict)
    emitter: Emitter = field(init=False)
    current: Optional[RestoreSession] = field(init=False, default=None)

    def __post_init__(self) -> None:
        cfg = dict(self.config or {})
        rt = dict(cfg.get("runtime") or {})
        self.debug = bool(rt.get("debug", False))
        self.settings = restore_settings(cfg)

        self.emitter = Emitter(self.on_progress, debug=self.debug)
        self.emit = self.emitter.emit
        self.dbg = self.emitter.dbg

    # Options
    def default_options(self) -> MergeOptions:
        return MergeOptions(
            strategy=self.settings["strategy"],
            restore_domains=dict(self.settings["domains"]),
            remote_exclusive=self.settings["remote_exclusive"],
        )

    def _options(self, options: MergeOptions | Mapping[str, Any] | None) -> MergeOptions:
        if options is None:
            return self.default_options()
        if isinstance(options, MergeOptions):
            return options
        return MergeOptions.model_validate(dict(options))

    def _busy(self) -> bool:
        return self.current is not None and self.current.state in IN_FLIGHT_STATES

    def reconfigure(self, config: Mapping[str, Any]) -> None:
        if self._busy():
            raise ConcurrentSessionError(f"restore session {self.current.id} is still running")
        self.config = config
        self.settings = restore_settings(dict(config or {}))
        self.dbg("settings reloaded", **self.settings)

    # Preview
    async def preview(self, raw: Any, local: Dataset | None = None, *, source: str = "") -> RestoreSession:
        if self._busy():
            raise ConcurrentSessionError(f"restore session {self.current.id} is still running")

        prev = self.current
        if prev is not None and not prev.finished:
            prev.superseded = True
            prev.abort()
            self.dbg("superseded session", prev.id)

        session = RestoreSession(source=str(source or ""))
        self.current = session
        session.advance(SessionState.PREVIEWING)
        self.emit("restore:preview:start", session=session.id, source=session.source)

        if local is None:
            local = await load_dataset(self.store)
        session.local = copy.deepcopy(dict(local))
        session.raw = copy.deepcopy(raw)

        session.remote, session.schema = normalize_snapshot(
            session.raw, collision=self.settings["legacy_collision"]
        )
        for w in session.schema.warnings:
            session.warn(w)
        session.diff = diff_dataset(session.local, session.remote)

        conflicts = session.diff.conflict_count()
        log.info(
            f"preview ready ({session.schema.version.value} snapshot, {conflicts} conflicts)",
            extra={"session": session.id},
        )
        self.emit(
            "restore:preview:done",
            session=session.id,
            schema=session.schema.version.value,
            conflicts=conflicts,
            warnings=len(session.warnings),
        )
        return session

    # Apply
    def _check_cancel(self, session: RestoreSession) -> None:
        if session.cancel_requested:
            raise SessionStateError(f"session {session.id} was cancelled", key=session.id)

    def _resolve(self, session: RestoreSession, opts: MergeOptions) -> dict[str, ResolvedDomain]:
        diff = session.diff
        assert diff is not None
        out: dict[str, ResolvedDomain] = {}
        for d in opts.selected_domains():
            if d in KEYED_DOMAINS:
                rd = resolve(diff.keyed[d], opts.strategy, opts.overrides, remote_exclusive=opts.remote_exclusive)
            elif d in BLOB_DOMAINS:
                rd = resolve_blob(
                    d,
                    session.local.get(d.value),
                    session.remote.get(d.value),
                    opts.strategy,
                    opts.overrides,
                    keep_local=self.settings["settings_keep_local"],
                )
            else:
                rd = resolve_logs(session.local.get(d.value), session.remote.get(d.value), opts.strategy)
            out[d.value] = rd
            self.dbg("resolved", d.value, **rd.summary.to_dict())
        return out

    def _fail(self, session: RestoreSession, err: RestoreError, result: MergeResult) -> MergeResult:
        if not session.finished:
            session.abort()
        result.success = False
        result.error = err.to_dict()
        result.warnings = list(session.warnings)
        log.error(f"restore failed: {err.message}", extra=err.to_dict())
        self.emit("restore:failed", session=session.id, **err.to_dict())
        return result

    async def apply(self, session: RestoreSession, options: MergeOptions | Mapping[str, Any] | None = None) -> MergeResult:
        """Resolve, validate, back up and commit a previewed session.

        Fatal conditions come back in ``MergeResult.error``; when it reports a
        CommitPartialFailure the safety snapshot in ``snapshot_id`` is kept for
        ``rollback``.
        """
        opts = self._options(options)
        result = MergeResult(success=False, session_id=session.id)

        if session.superseded:
            return self._fail(session, ConcurrentSessionError(f"session {session.id} was superseded"), result)
        if not session.previewed or session.state is not SessionState.PREVIEWING:
            err = SessionStateError(f"session {session.id} is {session.state.value}; preview it first", key=session.id)
            return self._fail(session, err, result)
        if self.current is not session:
            return self._fail(session, ConcurrentSessionError(f"session {session.id} belongs to another engine"), result)

        try:
            self._check_cancel(session)
            session.advance(SessionState.RESOLVING)
            self.emit("restore:resolve:start", session=session.id, strategy=opts.strategy.value)
            session.resolved = self._resolve(session, opts)
            result.summary = {name: rd.summary for name, rd in session.resolved.items()}
            result.merged_data = {name: rd.value for name, rd in session.resolved.items()}

            self._check_cancel(session)
            session.advance(SessionState.VALIDATING)
            for w in validate(result.merged_data, self.settings["required_settings_sections"]):
                session.warn(w)

            self._check_cancel(session)
            session.advance(SessionState.SNAPSHOTTING_LOCAL)
            try:
                before: Dataset = {}
                for name in session.resolved:
                    before[name] = await self.store.get(name)
                snap = await self.safety.capture(before, source=session.source)
            except RestoreError:
                raise
            except Exception as e:
                raise SnapshotPersistError(f"could not back up local data: {str(e) or e.__class__.__name__}") from e
            session.snapshot_id = result.snapshot_id = snap.id
            self.emit("restore:snapshot:done", session=session.id, snapshot=snap.id)
            if session.cancel_requested:
                await self.safety.discard(snap.id)
                session.snapshot_id = result.snapshot_id = None
                self._check_cancel(session)

            session.advance(SessionState.COMMITTING)
            written: list[str] = []
            failed: dict[str, str] = {}
            for name, rd in session.resolved.items():
                try:
                    await self.store.put(name, rd.value)
                except Exception as e:
                    failed[name] = str(e) or e.__class__.__name__
                    self.emit("restore:commit:domain", session=session.id, domain=name, ok=False)
                    continue
                written.append(name)
                self.emit("restore:commit:domain", session=session.id, domain=name, ok=True)
            if failed:
                raise CommitPartialFailure(
                    f"{len(failed)} domain(s) failed to commit; roll back with snapshot {snap.id}",
                    written=written,
                    failed=failed,
                )
            session.advance(SessionState.DONE)
        except RestoreError as e:
            return self._fail(session, e, result)
        except Exception as e:
            stage = session.state.value
            err = RestoreError(f"unexpected {e.__class__.__name__} while {stage}: {e}")
            return self._fail(session, err, result)

        result.success = True
        result.warnings = list(session.warnings)
        totals = {k: v.to_dict() for k, v in result.summary.items()}
        log.success(f"restore committed ({len(written)} domains)", extra={"session": session.id, "snapshot": snap.id})
        self.emit("restore:done", session=session.id, snapshot=snap.id, summary=totals)
        return result

    async def restore(
        self,
        raw: Any,
        options: MergeOptions | Mapping[str, Any] | None = None,
        *,
        local: Dataset | None = None,
        source: str = "",
    ) -> MergeResult:
        session = await self.preview(raw, local, source=source)
        return await self.apply(session, options)

    def cancel(self, session: RestoreSession) -> RestoreSession:
        if session.state in (SessionState.COMMITTING, SessionState.DONE):
            raise SessionStateError(f"session {session.id} is {session.state.value}; too late to cancel", key=session.id)
        if session.state is SessionState.ABORTED:
            return session
        session.cancel_requested = True
        if session.state in (SessionState.IDLE, SessionState.PREVIEWING):
            session.abort()
        self.emit("restore:cancel", session=session.id, state=session.state.value)
        return session

    # After commit
    async def confirm(self, session: RestoreSession) -> list[str]:
        if session.state is not SessionState.DONE:
            raise SessionStateError(f"session {session.id} is {session.state.value}; nothing to confirm", key=session.id)
        removed = await self.safety.prune(self.settings["retention"])
        self.emit("restore:confirm", session=session.id, pruned=len(removed))
        return removed

    async def rollback(self, snapshot_id: str | None = None) -> dict[str, Any]:
        if self._busy():
            raise ConcurrentSessionError(f"restore session {self.current.id} is still running")
        snap = await self.safety.load(snapshot_id) if snapshot_id else await self.safety.latest()
        if snap is None:
            raise SnapshotNotFoundError("no safety snapshot to roll back to")

        known = {d.value for d in Domain}
        domains = [name for name in snap.data if name in known]
        for name in domains:
            await self.store.put(name, snap.data[name])
        await self.safety.discard(snap.id)

        log.warn(f"rolled back to safety snapshot {snap.id}", extra={"domains": domains})
        self.emit("restore:rollback", snapshot=snap.id, domains=domains)
        return {"snapshot_id": snap.id, "domains": domains, "created_at": snap.created_at}

    # Housekeeping
    async def list_snapshots(self) -> list[dict[str, Any]]:
        return await self.safety.list_snapshots()

    async def cleanup(self, keep: int | None = None) -> list[str]:
        n = self.settings["retention"] if keep is None else int(keep)
        removed = await self.safety.prune(n)
        if removed:
            log.info(f"pruned {len(removed)} safety snapshot(s)")
        return removed

    async def delete_snapshot(self, snapshot_id: str) -> None:
        if not await self.safety.discard(snapshot_id):
            raise SnapshotNotFoundError(f"safety snapshot not found: {snapshot_id}")

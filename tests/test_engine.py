# ReelVault test scripts
from __future__ import annotations

import asyncio
import copy
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest

from rv_platform.reconcile import (
    ConcurrentSessionError,
    JsonDatasetStore,
    MemoryDatasetStore,
    RestoreEngine,
    RestoreSession,
    SafetySnapshotManager,
    SessionState,
    SessionStateError,
    SnapshotNotFoundError,
)
from rv_platform.reconcile._state_store import load_dataset


def _video(key: str, status: str = "browsed", updated: int = 100, **extra) -> dict:
    rec = {"id": key, "title": key, "status": status, "tags": [], "createdAt": 1, "updatedAt": updated}
    rec.update(extra)
    return rec


def _snapshot(data: dict[str, Any], **extra) -> dict[str, Any]:
    snap = {"version": "2.1", "timestamp": "2025-06-01T00:00:00Z", "data": data}
    snap.update(extra)
    return snap


def _engine(tmp_path: Path, store: Any = None, *, cfg: dict | None = None, safety: Any = None, events: list | None = None) -> RestoreEngine:
    return RestoreEngine(
        store=store if store is not None else MemoryDatasetStore(),
        safety=safety if safety is not None else SafetySnapshotManager(tmp_path / "backups"),
        config=cfg or {},
        on_progress=(events.append if events is not None else None),
    )


@dataclass
class GatedStore(MemoryDatasetStore):
    gate: asyncio.Event | None = None

    async def put(self, domain: str, value: Any) -> None:
        if self.gate is not None:
            await self.gate.wait()
        await super().put(domain, value)


@dataclass
class FailingStore(MemoryDatasetStore):
    fail_on: str = ""

    async def put(self, domain: str, value: Any) -> None:
        if domain == self.fail_on:
            raise OSError("disk full")
        await super().put(domain, value)


class GatedSafety(SafetySnapshotManager):
    gate: asyncio.Event | None = None

    async def capture(self, data, *, label: str = "pre-restore", source: str = ""):
        if self.gate is not None:
            await self.gate.wait()
        return await super().capture(data, label=label, source=source)


async def _until(session: RestoreSession, state: SessionState) -> None:
    for _ in range(500):
        if session.state is state:
            return
        await asyncio.sleep(0.01)
    raise AssertionError(f"session never reached {state.value}: {session.state.value}")


def test_smart_restore_keeps_higher_status_and_adopts_remote_only(tmp_path: Path) -> None:
    store = MemoryDatasetStore({"videoRecords": {"ABC-123": _video("ABC-123", "viewed", 100)}})
    eng = _engine(tmp_path, store)
    raw = _snapshot({"ABC-123": _video("ABC-123", "browsed", 200), "XYZ-1": _video("XYZ-1")})

    res = asyncio.run(eng.restore(raw, {"strategy": "smart"}))

    assert res.success, res.error
    assert store.data["videoRecords"]["ABC-123"]["status"] == "viewed"
    assert "XYZ-1" in store.data["videoRecords"]
    s = res.summary["videoRecords"]
    assert (s.added, s.updated, s.kept, s.total) == (1, 0, 1, 2)
    assert res.snapshot_id
    assert len(asyncio.run(eng.list_snapshots())) == 1
    assert eng.current.state is SessionState.DONE


def test_local_strategy_rejects_remote_only(tmp_path: Path) -> None:
    store = MemoryDatasetStore({"videoRecords": {}})
    eng = _engine(tmp_path, store)

    res = asyncio.run(eng.restore(_snapshot({"XYZ-1": _video("XYZ-1")}), {"strategy": "local-priority"}))

    assert res.success
    assert store.data["videoRecords"] == {}
    assert res.merged_data["videoRecords"] == {}


def test_manual_without_overrides_writes_nothing(tmp_path: Path) -> None:
    store = MemoryDatasetStore({"videoRecords": {"A": _video("A", "want")}})
    before = copy.deepcopy(store.data)
    eng = _engine(tmp_path, store)

    async def run():
        session = await eng.preview(_snapshot({"A": _video("A", "viewed")}))
        return session, await eng.apply(session, {"strategy": "manual"})

    session, res = asyncio.run(run())

    assert not res.success
    assert res.error["kind"] == "MissingOverrideError"
    assert res.error["domain"] == "videoRecords"
    assert res.error["key"] == "A"
    assert store.data == before
    assert asyncio.run(eng.list_snapshots()) == []
    assert session.state is SessionState.ABORTED


def test_manual_with_overrides_commits(tmp_path: Path) -> None:
    store = MemoryDatasetStore({"videoRecords": {"A": _video("A", "want")}})
    eng = _engine(tmp_path, store)

    res = asyncio.run(
        eng.restore(_snapshot({"A": _video("A", "viewed")}), {"strategy": "custom", "overrides": {"A": "cloud"}})
    )

    assert res.success, res.error
    assert store.data["videoRecords"]["A"]["status"] == "viewed"


def test_rollback_restores_exact_bytes(tmp_path: Path) -> None:
    store = JsonDatasetStore(tmp_path / "dataset")
    eng = _engine(tmp_path, store)
    seed = {
        "videoRecords": {"A": _video("A", "want", tags=["b", "a"]), "B": _video("B")},
        "actorRecords": {"act": {"id": "act", "name": "N", "gender": "female", "category": "censored", "aliases": []}},
        "settings": {"display": {"x": 1}, "dataSync": {}, "actorSync": {}, "webdav": {"url": "u"}},
    }

    async def run():
        for k, v in seed.items():
            await store.put(k, v)
        before = await load_dataset(store)
        raw_bytes = store.path("videoRecords").read_bytes()

        res = await eng.restore(
            _snapshot(
                {"A": _video("A", "viewed", 500), "C": _video("C")},
                settings={"display": {"x": 2}, "dataSync": {"y": 1}, "actorSync": {}},
            ),
            {"strategy": "smart"},
        )
        assert res.success, res.error
        assert await load_dataset(store) != before

        out = await eng.rollback(res.snapshot_id)
        assert out["snapshot_id"] == res.snapshot_id
        assert await load_dataset(store) == before
        assert store.path("videoRecords").read_bytes() == raw_bytes
        assert await eng.list_snapshots() == []

    asyncio.run(run())


def test_rollback_without_snapshot_raises(tmp_path: Path) -> None:
    eng = _engine(tmp_path)
    with pytest.raises(SnapshotNotFoundError):
        asyncio.run(eng.rollback())


def test_newer_preview_supersedes_older_session(tmp_path: Path) -> None:
    eng = _engine(tmp_path)
    raw = _snapshot({"A": _video("A")})

    async def run():
        first = await eng.preview(raw)
        second = await eng.preview(raw)
        stale = await eng.apply(first)
        fresh = await eng.apply(second)
        return first, stale, fresh

    first, stale, fresh = asyncio.run(run())
    assert first.superseded
    assert stale.error["kind"] == "ConcurrentSessionError"
    assert fresh.success


def test_preview_rejected_while_committing(tmp_path: Path) -> None:
    store = GatedStore()
    eng = _engine(tmp_path, store)
    raw = _snapshot({"A": _video("A")})

    async def run():
        store.gate = asyncio.Event()
        session = await eng.preview(raw)
        task = asyncio.create_task(eng.apply(session, {"strategy": "smart"}))
        await _until(session, SessionState.COMMITTING)

        with pytest.raises(ConcurrentSessionError):
            await eng.preview(raw)
        with pytest.raises(SessionStateError):
            eng.cancel(session)
        with pytest.raises(ConcurrentSessionError):
            await eng.rollback()
        with pytest.raises(ConcurrentSessionError):
            eng.reconfigure({"restore": {"retention": 1}})

        store.gate.set()
        return await task

    res = asyncio.run(run())
    assert res.success
    assert store.data["videoRecords"]["A"]["id"] == "A"


def test_cancel_before_apply(tmp_path: Path) -> None:
    eng = _engine(tmp_path)

    async def run():
        session = await eng.preview(_snapshot({"A": _video("A")}))
        eng.cancel(session)
        return session, await eng.apply(session)

    session, res = asyncio.run(run())
    assert session.state is SessionState.ABORTED
    assert res.error["kind"] == "SessionStateError"


def test_cancel_while_snapshotting_discards_backup(tmp_path: Path) -> None:
    store = MemoryDatasetStore({"videoRecords": {}})
    safety = GatedSafety(tmp_path / "backups")
    eng = _engine(tmp_path, store, safety=safety)

    async def run():
        safety.gate = asyncio.Event()
        session = await eng.preview(_snapshot({"A": _video("A")}))
        task = asyncio.create_task(eng.apply(session, {"strategy": "smart"}))
        await _until(session, SessionState.SNAPSHOTTING_LOCAL)
        eng.cancel(session)
        safety.gate.set()
        return session, await task

    session, res = asyncio.run(run())
    assert not res.success
    assert res.error["kind"] == "SessionStateError"
    assert res.snapshot_id is None
    assert session.state is SessionState.ABORTED
    assert store.data == {"videoRecords": {}}
    assert asyncio.run(eng.list_snapshots()) == []


def test_apply_without_preview_is_refused(tmp_path: Path) -> None:
    eng = _engine(tmp_path)
    res = asyncio.run(eng.apply(RestoreSession()))
    assert res.error["kind"] == "SessionStateError"


def test_commit_partial_failure_keeps_snapshot_for_rollback(tmp_path: Path) -> None:
    store = FailingStore({"videoRecords": {"A": _video("A")}}, fail_on="actorRecords")
    before = copy.deepcopy(store.data)
    eng = _engine(tmp_path, store)

    res = asyncio.run(eng.restore(_snapshot({"B": _video("B")}), {"strategy": "smart"}))

    assert not res.success
    assert res.error["kind"] == "CommitPartialFailure"
    assert "actorRecords" in res.error["failed"]
    assert "videoRecords" in res.error["written"]
    assert "B" in store.data["videoRecords"]
    assert res.snapshot_id

    store.fail_on = ""
    asyncio.run(eng.rollback(res.snapshot_id))
    assert store.data["videoRecords"] == before["videoRecords"]


def test_snapshot_persist_failure_writes_nothing(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x", encoding="utf-8")
    store = MemoryDatasetStore({"videoRecords": {"A": _video("A")}})
    before = copy.deepcopy(store.data)
    eng = _engine(tmp_path, store, safety=SafetySnapshotManager(blocker / "backups"))

    res = asyncio.run(eng.restore(_snapshot({"B": _video("B")}), {"strategy": "smart"}))

    assert not res.success
    assert res.error["kind"] == "SnapshotPersistError"
    assert store.data == before


def test_invalid_candidate_aborts_before_snapshot(tmp_path: Path) -> None:
    store = MemoryDatasetStore({"videoRecords": {}})
    eng = _engine(tmp_path, store)

    res = asyncio.run(eng.restore(_snapshot({"B": _video("B", tags="oops")}), {"strategy": "smart"}))

    assert not res.success
    assert res.error["kind"] == "ValidationError"
    assert res.error["rule"] == "tags"
    assert store.data == {"videoRecords": {}}
    assert asyncio.run(eng.list_snapshots()) == []


def test_legacy_snapshot_restores_through_migration(tmp_path: Path) -> None:
    store = MemoryDatasetStore()
    eng = _engine(tmp_path, store)

    async def run():
        session = await eng.preview({"want": {"A-1": {"status": "want"}}})
        assert session.schema.version.value == "legacy"
        return await eng.apply(session, {"strategy": "smart"})

    res = asyncio.run(run())
    assert res.success, res.error
    assert store.data["videoRecords"]["A-1"]["status"] == "want"
    assert store.data["videoRecords"]["A-1"]["tags"] == []


def test_unknown_snapshot_warns(tmp_path: Path) -> None:
    eng = _engine(tmp_path)
    res = asyncio.run(eng.restore({"something": 1}, {"strategy": "smart"}))
    assert res.success
    assert any("unrecognized" in w for w in res.warnings)


def test_confirm_prunes_to_retention(tmp_path: Path) -> None:
    eng = _engine(tmp_path, cfg={"restore": {"retention": 2}})
    raw = _snapshot({"A": _video("A")})

    async def run():
        for _ in range(3):
            res = await eng.restore(raw, {"strategy": "smart"})
            assert res.success
        removed = await eng.confirm(eng.current)
        return removed, await eng.list_snapshots()

    removed, left = asyncio.run(run())
    assert len(removed) == 1
    assert len(left) == 2
    assert left[0]["created_ms"] >= left[1]["created_ms"]


def test_confirm_refuses_unfinished_session(tmp_path: Path) -> None:
    eng = _engine(tmp_path)

    async def run():
        session = await eng.preview(_snapshot({}))
        await eng.confirm(session)

    with pytest.raises(SessionStateError):
        asyncio.run(run())


def test_domain_selection_limits_writes(tmp_path: Path) -> None:
    store = MemoryDatasetStore()
    eng = _engine(tmp_path, store)
    raw = _snapshot({"A": _video("A")}, settings={"display": {}, "dataSync": {}, "actorSync": {}})

    res = asyncio.run(eng.restore(raw, {"strategy": "smart", "restoreDomains": {"videoRecords": True}}))

    assert res.success
    assert set(store.data) == {"videoRecords"}
    assert set(res.summary) == {"videoRecords"}


def test_progress_events_are_json_lines(tmp_path: Path) -> None:
    events: list[str] = []
    eng = _engine(tmp_path, events=events)

    asyncio.run(eng.restore(_snapshot({"A": _video("A")}), {"strategy": "smart"}))

    names = [json.loads(e)["event"] for e in events if e.startswith("{")]
    assert names[0] == "restore:preview:start"
    assert "restore:preview:done" in names
    assert "restore:commit:domain" in names
    assert names[-1] == "restore:done"


@dataclass
class ReadFailingStore(MemoryDatasetStore):
    armed: bool = False

    async def get(self, domain: str) -> Any:
        if self.armed:
            raise OSError("storage offline")
        return await super().get(domain)


def test_store_read_failure_during_backup_is_reported_and_releases_engine(tmp_path: Path) -> None:
    store = ReadFailingStore({"videoRecords": {"A": _video("A")}})
    before = copy.deepcopy(store.data)
    eng = _engine(tmp_path, store)

    async def run():
        session = await eng.preview(_snapshot({"B": _video("B")}))
        store.armed = True
        res = await eng.apply(session, {"strategy": "smart"})
        store.armed = False
        nxt = await eng.preview(_snapshot({"B": _video("B")}))
        return session, res, nxt

    session, res, nxt = asyncio.run(run())

    assert not res.success
    assert res.error["kind"] == "SnapshotPersistError"
    assert "storage offline" in res.error["message"]
    assert session.state is SessionState.ABORTED
    assert store.data == before
    assert asyncio.run(eng.list_snapshots()) == []
    assert nxt.state is SessionState.PREVIEWING


def test_unexpected_error_aborts_session(tmp_path: Path) -> None:
    eng = _engine(tmp_path)

    def boom(*_a, **_k):
        raise ZeroDivisionError("bad math")

    async def run():
        session = await eng.preview(_snapshot({"A": _video("A")}))
        eng._resolve = boom
        return session, await eng.apply(session, {"strategy": "smart"})

    session, res = asyncio.run(run())

    assert not res.success
    assert res.error["kind"] == "RestoreError"
    assert "ZeroDivisionError" in res.error["message"]
    assert session.state is SessionState.ABORTED
    assert not eng._busy()


def test_flat_legacy_map_with_timestamps_restores(tmp_path: Path) -> None:
    store = MemoryDatasetStore()
    eng = _engine(tmp_path, store)

    res = asyncio.run(eng.restore({"A-1": {"status": "unviewed", "createdAt": 1, "updatedAt": 2}}, {"strategy": "smart"}))

    assert res.success, res.error
    rec = store.data["videoRecords"]["A-1"]
    assert rec["status"] == "browsed"
    assert rec["title"] == "A-1"


def test_v1_export_restores(tmp_path: Path) -> None:
    store = MemoryDatasetStore()
    eng = _engine(tmp_path, store)
    v1 = {"data": [{"id": "A-1", "title": "A", "status": "unviewed", "timestamp": 1700000000000}]}

    async def run():
        session = await eng.preview(v1)
        assert session.schema.version.value == "legacy"
        return await eng.apply(session, {"strategy": "smart"})

    res = asyncio.run(run())
    assert res.success, res.error
    rec = store.data["videoRecords"]["A-1"]
    assert rec["status"] == "browsed"
    assert rec["createdAt"] == rec["updatedAt"] == 1700000000000


def test_missing_settings_blob_warns(tmp_path: Path) -> None:
    eng = _engine(tmp_path)
    res = asyncio.run(eng.restore(_snapshot({"A": _video("A")}), {"strategy": "smart"}))
    assert res.success
    assert any("required sections not checked" in w for w in res.warnings)


def test_debug_events_only_when_enabled(tmp_path: Path) -> None:
    quiet: list[str] = []
    loud: list[str] = []
    raw = _snapshot({"A": _video("A")})

    asyncio.run(_engine(tmp_path / "q", events=quiet).restore(raw, {"strategy": "smart"}))
    asyncio.run(_engine(tmp_path / "l", cfg={"runtime": {"debug": True}}, events=loud).restore(raw, {"strategy": "smart"}))

    assert not any(json.loads(e)["event"] == "debug" for e in quiet)
    dbg = [json.loads(e) for e in loud if json.loads(e)["event"] == "debug"]
    assert any(d["msg"] == "resolved videoRecords" and d["added"] == 1 for d in dbg)


def test_failing_progress_callback_does_not_break_restore(tmp_path: Path) -> None:
    def cb(_line: str) -> None:
        raise RuntimeError("listener gone")

    eng = RestoreEngine(store=MemoryDatasetStore(), safety=SafetySnapshotManager(tmp_path / "b"), on_progress=cb)
    res = asyncio.run(eng.restore(_snapshot({"A": _video("A")}), {"strategy": "smart"}))

    assert res.success
    assert eng.emitter.dropped > 0


def test_reconfigure_applies_normalized_settings(tmp_path: Path) -> None:
    eng = _engine(tmp_path)
    eng.reconfigure({"restore": {"retention": 0, "strategy": "remote"}})
    assert eng.settings["retention"] == 1
    assert eng.default_options().strategy.value == "remote"

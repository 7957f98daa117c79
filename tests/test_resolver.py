# ReelVault test scripts
from __future__ import annotations

import pytest

from rv_platform.reconcile._differ import diff
from rv_platform.reconcile._errors import MissingOverrideError
from rv_platform.reconcile._resolver import (
    merge_actor,
    merge_video,
    resolve,
    resolve_blob,
    resolve_logs,
)
from rv_platform.reconcile._types import Domain, Resolution, Strategy


def _video(key: str, status: str = "browsed", updated: int = 100, **extra) -> dict:
    rec = {"id": key, "title": key, "status": status, "tags": [], "createdAt": 1, "updatedAt": updated}
    rec.update(extra)
    return rec


def _vdiff(local: dict, remote: dict):
    return diff(Domain.VIDEO_RECORDS, local, remote)


def test_smart_keeps_higher_status() -> None:
    d = _vdiff(
        {"ABC-123": {"status": "viewed", "updatedAt": 100}},
        {"ABC-123": {"status": "browsed", "updatedAt": 200}},
    )
    out = resolve(d, Strategy.SMART)
    assert out.value["ABC-123"]["status"] == "viewed"
    assert out.summary.kept == 1
    assert out.summary.updated == 0


def test_local_rejects_remote_only_and_smart_adopts_it() -> None:
    d = _vdiff({}, {"XYZ-1": _video("XYZ-1")})

    local = resolve(d, Strategy.LOCAL)
    assert local.value == {}
    assert local.summary.added == 0

    smart = resolve(d, Strategy.SMART)
    assert smart.value == {"XYZ-1": _video("XYZ-1")}
    assert smart.summary.added == 1
    assert smart.summary.total == 1


def test_smart_never_drops_a_key() -> None:
    local = {"A": _video("A"), "B": _video("B", "want"), "C": _video("C")}
    remote = {"B": _video("B", "viewed"), "C": _video("C"), "D": _video("D")}
    out = resolve(_vdiff(local, remote), Strategy.SMART)
    assert set(out.value) == set(local) | set(remote)
    assert out.value["B"]["status"] == "viewed"
    assert (out.summary.added, out.summary.updated, out.summary.kept) == (1, 1, 2)


def test_remote_clamps_status_unless_key_override() -> None:
    d = _vdiff({"A": _video("A", "viewed", 100)}, {"A": _video("A", "browsed", 200, title="remote")})

    clamped = resolve(d, Strategy.REMOTE)
    assert clamped.value["A"]["status"] == "viewed"
    assert clamped.value["A"]["title"] == "remote"

    forced = resolve(d, Strategy.REMOTE, {"videoRecords:A": "remote"})
    assert forced.value["A"]["status"] == "browsed"


def test_remote_exclusive_drops_local_only() -> None:
    d = _vdiff({"A": _video("A"), "B": _video("B")}, {"B": _video("B")})
    kept = resolve(d, Strategy.REMOTE)
    assert set(kept.value) == {"A", "B"}

    dropped = resolve(d, Strategy.REMOTE, remote_exclusive=True)
    assert set(dropped.value) == {"B"}
    assert dropped.summary.removed == 1


def test_manual_requires_an_override_per_conflict() -> None:
    d = _vdiff(
        {"A": _video("A", "want"), "B": _video("B", "want")},
        {"A": _video("A", "viewed"), "B": _video("B", "browsed")},
    )
    with pytest.raises(MissingOverrideError) as ei:
        resolve(d, Strategy.MANUAL, {"A": "remote"})
    assert ei.value.domain == "videoRecords"
    assert ei.value.key == "B"

    out = resolve(d, Strategy.MANUAL, {"A": "remote", "videoRecords:B": Resolution.LOCAL, "B": "remote"})
    assert out.value["A"]["status"] == "viewed"
    assert out.value["B"]["status"] == "want"
    assert out.resolutions == {"A": Resolution.REMOTE, "B": Resolution.LOCAL}


def test_merge_video_fields() -> None:
    local = _video("A", "viewed", 100, tags=["x"], title="old", custom="keep")
    local["createdAt"] = 50
    remote = _video("A", "want", 300, tags=["y", "x"], title="new")
    remote["createdAt"] = 10

    m = merge_video(local, remote)
    assert m["status"] == "viewed"
    assert m["tags"] == ["x", "y"]
    assert m["createdAt"] == 10
    assert m["updatedAt"] == 300
    assert m["title"] == "new"
    assert m["custom"] == "keep"


def test_merge_override_on_conflict() -> None:
    d = _vdiff({"A": _video("A", "viewed", 100, tags=["x"])}, {"A": _video("A", "browsed", 200, tags=["y"])})
    out = resolve(d, Strategy.MANUAL, {"A": "merge"})
    assert out.value["A"]["status"] == "viewed"
    assert sorted(out.value["A"]["tags"]) == ["x", "y"]


def test_merge_actor_unions_aliases() -> None:
    m = merge_actor(
        {"id": "a", "name": "Old", "aliases": ["x"], "updatedAt": 1},
        {"id": "a", "name": "New", "aliases": ["y", "x"], "updatedAt": 2},
    )
    assert m["name"] == "New"
    assert m["aliases"] == ["x", "y"]


def test_merge_video_combines_enhanced_data_keywise() -> None:
    local = _video("A", "viewed", 300, enhancedData={"cover": "l.jpg", "score": 4, "lastEnhanced": 900})
    remote = _video("A", "viewed", 100, enhancedData={"score": 5, "plot": "p", "lastEnhanced": 500})

    m = merge_video(local, remote)
    assert m["enhancedData"] == {"cover": "l.jpg", "score": 4, "plot": "p", "lastEnhanced": 900}

    only_remote = merge_video(_video("A"), remote)
    assert only_remote["enhancedData"] == remote["enhancedData"]


def test_merge_actor_combines_details_keywise() -> None:
    m = merge_actor(
        {"id": "a", "name": "A", "aliases": [], "details": {"height": 160, "cup": "B"}, "updatedAt": 1},
        {"id": "a", "name": "A", "aliases": [], "details": {"height": 161, "birth": "1990"}, "updatedAt": 2},
    )
    assert m["details"] == {"height": 161, "cup": "B", "birth": "1990"}


def test_settings_blob_smart_keeps_local_sections() -> None:
    local = {"webdav": {"url": "local"}, "display": {"a": 1}, "dataSync": {"x": 1}}
    remote = {"webdav": {"url": "remote"}, "display": {"a": 2}, "dataSync": {"x": 2}, "actorSync": {}}

    out = resolve_blob(Domain.SETTINGS, local, remote, Strategy.SMART, keep_local=["webdav", "display", "userExperience"])
    assert out.value == {"webdav": {"url": "local"}, "display": {"a": 1}, "dataSync": {"x": 2}, "actorSync": {}}
    assert out.summary.updated == 1

    assert resolve_blob(Domain.SETTINGS, local, remote, Strategy.LOCAL).value == local
    assert resolve_blob(Domain.SETTINGS, local, remote, Strategy.REMOTE).value == remote


def test_blob_under_manual_needs_domain_override() -> None:
    with pytest.raises(MissingOverrideError):
        resolve_blob(Domain.USER_PROFILE, {"a": 1}, {"a": 2}, Strategy.MANUAL)

    out = resolve_blob(Domain.USER_PROFILE, {"a": 1}, {"a": 2}, Strategy.MANUAL, {"userProfile": "remote"})
    assert out.value == {"a": 2}

    same = resolve_blob(Domain.USER_PROFILE, {"a": 1}, {"a": 1}, Strategy.MANUAL)
    assert same.summary.kept == 1


def test_logs_union_dedupes_by_timestamp() -> None:
    local = [{"timestamp": "2025-01-02T00:00:00Z", "msg": "b"}]
    remote = [
        {"timestamp": "2025-01-02T00:00:00Z", "msg": "b"},
        {"timestamp": "2025-01-01T00:00:00Z", "msg": "a"},
    ]
    out = resolve_logs(local, remote, Strategy.SMART)
    assert [e["msg"] for e in out.value] == ["a", "b"]
    assert out.summary.added == 1
    assert out.summary.kept == 1

    assert resolve_logs(local, remote, Strategy.LOCAL).value == local

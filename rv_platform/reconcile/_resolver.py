# rv_platform/reconcile/_resolver.py
# Conflict resolution per strategy; field-level merges for video and actor records.
# Copyright (c) 2025-2026 ReelVault
from __future__ import annotations

import copy
from collections.abc import Mapping, Sequence
from typing import Any, Dict, List, Optional, assert_never

from ..records import ACTOR_FIELDS, VIDEO_FIELDS, VersionedRecord
from ..status_priority import higher, safe_update
from ._differ import log_stamp, recency, ts_ms
from ._errors import MissingOverrideError
from ._types import (
    Conflict,
    Domain,
    DomainDiff,
    DomainSummary,
    KeyedMap,
    Resolution,
    ResolvedDomain,
    Strategy,
)

Overrides = Mapping[str, Any]


def _coerce(v: Any) -> Optional[Resolution]:
    if v is None:
        return None
    if isinstance(v, Resolution):
        return v
    s = str(v).strip().lower()
    return Resolution("remote" if s == "cloud" else s)


def override_for(overrides: Optional[Overrides], domain: Domain, key: str) -> Optional[Resolution]:
    if not overrides:
        return None
    v = overrides.get(f"{domain.value}:{key}")
    if v is None:
        v = overrides.get(key)
    return _coerce(v)


def _union(a: Any, b: Any) -> List[Any]:
    out: List[Any] = []
    for seq in (a, b):
        if not isinstance(seq, Sequence) or isinstance(seq, (str, bytes)):
            continue
        for x in seq:
            if x not in out:
                out.append(x)
    return out


def _min_ts(a: Any, b: Any) -> Any:
    ta, tb = ts_ms(a), ts_ms(b)
    if ta is None:
        return b
    if tb is None:
        return a
    return a if ta <= tb else b


def _max_ts(a: Any, b: Any) -> Any:
    ta, tb = ts_ms(a), ts_ms(b)
    if ta is None:
        return b
    if tb is None:
        return a
    return a if ta >= tb else b


def _merge_bag(older: Any, newer: Any) -> Any:
    # key-wise: keys from both sides survive, the newer side wins per key
    if isinstance(older, Mapping) and isinstance(newer, Mapping):
        return {**copy.deepcopy(dict(older)), **copy.deepcopy(dict(newer))}
    return copy.deepcopy(newer if newer is not None else older)


def merge_video(local: Mapping[str, Any], remote: Mapping[str, Any]) -> Dict[str, Any]:
    """Field merge: newer side for plain fields, priority for status, unions for lists."""
    newer, older = (remote, local) if recency(Domain.VIDEO_RECORDS, remote) > recency(Domain.VIDEO_RECORDS, local) else (local, remote)
    base = VersionedRecord.split(copy.deepcopy(dict(older)), VIDEO_FIELDS)
    top = VersionedRecord.split(copy.deepcopy(dict(newer)), VIDEO_FIELDS)
    base.fields.update(top.fields)
    base.extensions.update(top.extensions)
    base.order.extend(k for k in top.order if k not in base.order)

    base.set("status", higher(local.get("status"), remote.get("status")))
    base.set("tags", _union(local.get("tags"), remote.get("tags")))
    if "listIds" in local or "listIds" in remote:
        base.set("listIds", _union(local.get("listIds"), remote.get("listIds")))
    enhanced = _merge_bag(older.get("enhancedData"), newer.get("enhancedData"))
    bags = [b for b in (local.get("enhancedData"), remote.get("enhancedData")) if isinstance(b, Mapping)]
    if len(bags) == 2:
        last = _max_ts(bags[0].get("lastEnhanced"), bags[1].get("lastEnhanced"))
        if last is not None:
            enhanced["lastEnhanced"] = last
    if enhanced is not None:
        base.set("enhancedData", enhanced)
    created = _min_ts(local.get("createdAt"), remote.get("createdAt"))
    updated = _max_ts(local.get("updatedAt"), remote.get("updatedAt"))
    if created is not None:
        base.set("createdAt", created)
    if updated is not None:
        base.set("updatedAt", updated)
    return base.to_raw()


def merge_actor(local: Mapping[str, Any], remote: Mapping[str, Any]) -> Dict[str, Any]:
    newer, older = (remote, local) if recency(Domain.ACTOR_RECORDS, remote) > recency(Domain.ACTOR_RECORDS, local) else (local, remote)
    base = VersionedRecord.split(copy.deepcopy(dict(older)), ACTOR_FIELDS)
    top = VersionedRecord.split(copy.deepcopy(dict(newer)), ACTOR_FIELDS)
    base.fields.update(top.fields)
    base.extensions.update(top.extensions)
    base.order.extend(k for k in top.order if k not in base.order)
    base.set("aliases", _union(local.get("aliases"), remote.get("aliases")))
    details = _merge_bag(older.get("details"), newer.get("details"))
    if details is not None:
        base.set("details", details)
    return base.to_raw()


def merge_records(domain: Domain, local: Mapping[str, Any], remote: Mapping[str, Any]) -> Dict[str, Any]:
    if domain is Domain.VIDEO_RECORDS:
        return merge_video(local, remote)
    if domain is Domain.ACTOR_RECORDS:
        return merge_actor(local, remote)
    if recency(domain, remote) > recency(domain, local):
        return {**copy.deepcopy(dict(local)), **copy.deepcopy(dict(remote))}
    return {**copy.deepcopy(dict(remote)), **copy.deepcopy(dict(local))}


def _take_remote(domain: Domain, c: Conflict, clamp: bool) -> Dict[str, Any]:
    out = copy.deepcopy(c.remote)
    if clamp and domain is Domain.VIDEO_RECORDS:
        out["status"] = safe_update(c.local.get("status"), c.remote.get("status"))
    return out


def _apply(domain: Domain, c: Conflict, res: Resolution, *, clamp: bool) -> Dict[str, Any]:
    if res is Resolution.LOCAL:
        return copy.deepcopy(c.local)
    elif res is Resolution.REMOTE:
        return _take_remote(domain, c, clamp)
    elif res is Resolution.MERGE:
        return merge_records(domain, c.local, c.remote)
    else:
        assert_never(res)


def _pick(strategy: Strategy, c: Conflict, domain: Domain, overrides: Optional[Overrides]) -> Resolution:
    ov = override_for(overrides, domain, c.key)
    if ov is not None:
        return ov
    if strategy is Strategy.LOCAL:
        return Resolution.LOCAL
    elif strategy is Strategy.REMOTE:
        return Resolution.REMOTE
    elif strategy is Strategy.SMART:
        return c.recommendation
    elif strategy is Strategy.MANUAL:
        raise MissingOverrideError(
            f"conflict on '{c.key}' needs an explicit resolution",
            domain=domain.value,
            key=c.key,
        )
    else:
        assert_never(strategy)


def resolve(
    diff: DomainDiff,
    strategy: Strategy,
    overrides: Optional[Overrides] = None,
    *,
    remote_exclusive: bool = False,
) -> ResolvedDomain:
    """Merge one keyed domain.

    Every conflict is decided before anything is built, so a missing manual
    override raises before a partial value exists. Only a per-key override of
    ``remote`` may lower a video status.
    """
    domain = diff.domain
    decisions: Dict[str, Resolution] = {
        k: _pick(strategy, c, domain, overrides) for k, c in diff.conflicts.items()
    }

    out: KeyedMap = {}
    summary = DomainSummary()

    for k, v in diff.identical.items():
        out[k] = copy.deepcopy(v)
        summary.kept += 1

    for k, v in diff.local_only.items():
        if strategy is Strategy.REMOTE and remote_exclusive:
            summary.removed += 1
            continue
        out[k] = copy.deepcopy(v)
        summary.kept += 1

    if strategy is not Strategy.LOCAL:
        for k, v in diff.remote_only.items():
            out[k] = copy.deepcopy(v)
            summary.added += 1

    for k, c in diff.conflicts.items():
        res = decisions[k]
        clamp = override_for(overrides, domain, k) is not Resolution.REMOTE
        val = _apply(domain, c, res, clamp=clamp)
        out[k] = val
        if val == c.local:
            summary.kept += 1
        else:
            summary.updated += 1

    summary.total = len(out)
    return ResolvedDomain(domain=domain, value=out, summary=summary, resolutions=decisions)


def _smart_blob(domain: Domain, local: Any, remote: Any, keep_local: Sequence[str]) -> Any:
    if remote is None:
        return copy.deepcopy(local)
    if local is None:
        return copy.deepcopy(remote)
    if domain is Domain.SETTINGS and isinstance(local, Mapping) and isinstance(remote, Mapping):
        out = copy.deepcopy(dict(remote))
        for section in keep_local:
            if section in local:
                out[section] = copy.deepcopy(local[section])
        return out
    return copy.deepcopy(remote)


def resolve_blob(
    domain: Domain,
    local: Any,
    remote: Any,
    strategy: Strategy,
    overrides: Optional[Overrides] = None,
    *,
    keep_local: Sequence[str] = (),
) -> ResolvedDomain:
    summary = DomainSummary()
    ov = _coerce(overrides.get(domain.value)) if overrides else None

    if local == remote or remote is None:
        value = copy.deepcopy(local)
    elif ov is Resolution.LOCAL:
        value = copy.deepcopy(local)
    elif ov is Resolution.REMOTE:
        value = copy.deepcopy(remote)
    elif ov is Resolution.MERGE:
        value = _smart_blob(domain, local, remote, keep_local)
    elif strategy is Strategy.LOCAL:
        value = copy.deepcopy(local) if local is not None else copy.deepcopy(remote)
    elif strategy is Strategy.REMOTE:
        value = copy.deepcopy(remote)
    elif strategy is Strategy.SMART:
        value = _smart_blob(domain, local, remote, keep_local)
    elif strategy is Strategy.MANUAL:
        raise MissingOverrideError(
            f"'{domain.value}' differs and needs an explicit resolution",
            domain=domain.value,
        )
    else:
        assert_never(strategy)

    if value is None:
        summary.total = 0
    elif local is None:
        summary.added, summary.total = 1, 1
    elif value == local:
        summary.kept, summary.total = 1, 1
    else:
        summary.updated, summary.total = 1, 1
    return ResolvedDomain(domain=domain, value=value, summary=summary)


def _log_order(entry: Any) -> float:
    t = ts_ms(log_stamp(entry))
    return t if t is not None else 0.0


def resolve_logs(local: Any, remote: Any, strategy: Strategy) -> ResolvedDomain:
    ll = list(local) if isinstance(local, list) else []
    rl = list(remote) if isinstance(remote, list) else []

    if strategy is Strategy.LOCAL:
        merged = copy.deepcopy(ll)
    elif strategy is Strategy.REMOTE:
        merged = copy.deepcopy(rl)
    elif strategy is Strategy.SMART or strategy is Strategy.MANUAL:
        seen = {log_stamp(e) for e in ll}
        merged = copy.deepcopy(ll) + [copy.deepcopy(e) for e in rl if log_stamp(e) not in seen]
        merged.sort(key=_log_order)
    else:
        assert_never(strategy)

    kept = sum(1 for e in merged if e in ll)
    summary = DomainSummary(
        added=len(merged) - kept,
        kept=kept,
        removed=max(0, len(ll) - kept),
        total=len(merged),
    )
    return ResolvedDomain(domain=Domain.LOGS, value=merged, summary=summary)


__all__ = [
    "override_for",
    "merge_video",
    "merge_actor",
    "merge_records",
    "resolve",
    "resolve_blob",
    "resolve_logs",
]

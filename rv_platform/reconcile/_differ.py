# rv_platform/reconcile/_differ.py
# per-domain local/remote classification with conflict recommendations.
# Copyright (c) 2025-2026 ReelVault
from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from ..status_priority import priority
from ._types import (
    BLOB_DOMAINS,
    KEYED_DOMAINS,
    BlobDiff,
    Conflict,
    Dataset,
    DiffResult,
    Domain,
    DomainDiff,
    LogsDiff,
    Resolution,
    as_keyed_map,
)

Equals = Callable[[Mapping[str, Any], Mapping[str, Any]], bool]
Recommend = Callable[[Mapping[str, Any], Mapping[str, Any]], Resolution]

# Bookkeeping fields that change on every touch and never make two records different.
_VOLATILE: Dict[Domain, frozenset[str]] = {
    Domain.VIDEO_RECORDS: frozenset({"updatedAt"}),
    Domain.ACTOR_RECORDS: frozenset({"updatedAt", "syncInfo"}),
    Domain.SUBSCRIPTIONS: frozenset({"updatedAt", "lastCheckTime"}),
    Domain.WORK_RECORDS: frozenset({"updatedAt"}),
}
_SET_FIELDS = frozenset({"tags", "aliases", "listIds"})

# Recency fallbacks when a record has no updatedAt.
_RECENCY_FIELDS: Dict[Domain, tuple[str, ...]] = {
    Domain.VIDEO_RECORDS: ("updatedAt",),
    Domain.ACTOR_RECORDS: ("updatedAt",),
    Domain.SUBSCRIPTIONS: ("updatedAt", "lastCheckTime"),
    Domain.WORK_RECORDS: ("updatedAt", "discoveredAt"),
}


def ts_ms(v: Any) -> Optional[float]:
    """Epoch milliseconds from a number or an ISO-8601 string."""
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, (int, float)):
        return float(v)
    s = str(v).strip()
    if not s:
        return None
    try:
        return float(s)
    except ValueError:
        pass
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp() * 1000.0


def recency(domain: Domain, rec: Mapping[str, Any]) -> float:
    for name in _RECENCY_FIELDS.get(domain, ("updatedAt",)):
        t = ts_ms(rec.get(name))
        if t is not None:
            return t
    return 0.0


def _as_set(v: Any) -> Any:
    if not isinstance(v, (list, tuple, set)):
        return v
    try:
        return frozenset(v)
    except TypeError:
        return tuple(sorted(repr(x) for x in v))


def _canon(rec: Mapping[str, Any], volatile: frozenset[str]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for k, v in rec.items():
        if k in volatile:
            continue
        out[k] = _as_set(v) if k in _SET_FIELDS else v
    return out


def differing_fields(domain: Domain, a: Mapping[str, Any], b: Mapping[str, Any]) -> List[str]:
    vol = _VOLATILE.get(domain, frozenset())
    ca, cb = _canon(a, vol), _canon(b, vol)
    return sorted(k for k in set(ca) | set(cb) if ca.get(k) != cb.get(k))


def equals_for(domain: Domain) -> Equals:
    vol = _VOLATILE.get(domain, frozenset())

    def _eq(a: Mapping[str, Any], b: Mapping[str, Any]) -> bool:
        return _canon(a, vol) == _canon(b, vol)

    return _eq


def recommend_for(domain: Domain) -> Recommend:
    def _by_recency(local: Mapping[str, Any], remote: Mapping[str, Any]) -> Resolution:
        return Resolution.REMOTE if recency(domain, remote) > recency(domain, local) else Resolution.LOCAL

    if domain is not Domain.VIDEO_RECORDS:
        return _by_recency

    def _video(local: Mapping[str, Any], remote: Mapping[str, Any]) -> Resolution:
        pl, pr = priority(local.get("status")), priority(remote.get("status"))
        if pl != pr:
            return Resolution.REMOTE if pr > pl else Resolution.LOCAL
        return _by_recency(local, remote)

    return _video


def diff(
    domain: Domain,
    local: Mapping[str, Any],
    remote: Mapping[str, Any],
    *,
    equals: Optional[Equals] = None,
    recommend: Optional[Recommend] = None,
) -> DomainDiff:
    """Classify every key of ``local`` and ``remote`` into exactly one bucket."""
    eq = equals or equals_for(domain)
    rec = recommend or recommend_for(domain)
    lm, rm = as_keyed_map(local), as_keyed_map(remote)

    out = DomainDiff(domain=domain)
    for k, lv in lm.items():
        rv = rm.get(k)
        if rv is None:
            out.local_only[k] = lv
        elif eq(lv, rv):
            out.identical[k] = lv
        else:
            out.conflicts[k] = Conflict(
                key=k,
                local=lv,
                remote=rv,
                differences=differing_fields(domain, lv, rv),
                recommendation=rec(lv, rv),
            )
    for k, rv in rm.items():
        if k not in lm:
            out.remote_only[k] = rv
    return out


def diff_blob(domain: Domain, local: Any, remote: Any) -> BlobDiff:
    out = BlobDiff(domain=domain, local=local, remote=remote)
    if isinstance(local, Mapping) and isinstance(remote, Mapping):
        out.differences = sorted(k for k in set(local) | set(remote) if local.get(k) != remote.get(k))
        out.changed = bool(out.differences)
    else:
        out.changed = local != remote and remote is not None
    return out


def log_stamp(entry: Any) -> Any:
    return entry.get("timestamp") if isinstance(entry, Mapping) else None


def diff_logs(local: Any, remote: Any) -> LogsDiff:
    ll = local if isinstance(local, list) else []
    rl = remote if isinstance(remote, list) else []
    seen = {log_stamp(e) for e in ll}
    return LogsDiff(
        local_count=len(ll),
        remote_count=len(rl),
        new_entries=sum(1 for e in rl if log_stamp(e) not in seen),
    )


def diff_dataset(local: Dataset, remote: Dataset) -> DiffResult:
    out = DiffResult()
    for d in KEYED_DOMAINS:
        out.keyed[d] = diff(d, local.get(d.value) or {}, remote.get(d.value) or {})
    for d in BLOB_DOMAINS:
        out.blobs[d] = diff_blob(d, local.get(d.value), remote.get(d.value))
    out.logs = diff_logs(local.get(Domain.LOGS.value), remote.get(Domain.LOGS.value))
    return out


__all__ = [
    "ts_ms",
    "recency",
    "differing_fields",
    "equals_for",
    "recommend_for",
    "diff",
    "diff_blob",
    "diff_logs",
    "diff_dataset",
    "log_stamp",
]

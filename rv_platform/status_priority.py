# /rv_platform/status_priority.py
# Watch-status ordering for video records.
# - viewed(3) > want(2) > browsed(1) > untracked(0); anything else ranks below.
# - Live observations and restores may only upgrade a status, never downgrade it.
# Copyright (c) 2025-2026 ReelVault

from __future__ import annotations
from typing import Any, Dict, Tuple

VIEWED = "viewed"
WANT = "want"
BROWSED = "browsed"
UNTRACKED = "untracked"

STATUS_PRIORITY: Dict[str, int] = {
    VIEWED: 3,
    WANT: 2,
    BROWSED: 1,
    UNTRACKED: 0,
}

VIDEO_STATUSES: Tuple[str, ...] = (VIEWED, WANT, BROWSED, UNTRACKED)

# Unrecognized literals can never win a comparison.
UNKNOWN_PRIORITY = -1

__all__ = [
    "VIEWED", "WANT", "BROWSED", "UNTRACKED",
    "STATUS_PRIORITY", "VIDEO_STATUSES",
    "priority", "can_upgrade", "safe_update", "higher", "statuses_by_priority",
]


def priority(status: Any) -> int:
    return STATUS_PRIORITY.get(str(status) if status is not None else "", UNKNOWN_PRIORITY)


def can_upgrade(frm: Any, to: Any) -> bool:
    """True only when ``to`` ranks strictly above ``frm``."""
    return priority(to) > priority(frm)


def safe_update(frm: Any, to: Any) -> Any:
    """Status a record should carry after observing ``to``; never lower than ``frm``."""
    return to if can_upgrade(frm, to) else frm


def higher(a: Any, b: Any) -> Any:
    # ties keep the first argument
    return a if priority(a) >= priority(b) else b


def statuses_by_priority() -> list[str]:
    return sorted(VIDEO_STATUSES, key=priority, reverse=True)

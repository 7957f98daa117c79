# rv_platform/reconcile/_logging.py
# progress events for restore callers.
# Copyright (c) 2025-2026 ReelVault
from __future__ import annotations

import json
from typing import Any, Callable


class Emitter:
    """One JSON line per engine event, handed to ``cb``.

    A callback that raises never interrupts a restore; such events are
    counted in ``dropped``.
    """

    def __init__(self, cb: Callable[[str], None] | None, *, debug: bool = False):
        self.cb = cb
        self.debug = debug
        self.dropped = 0

    def emit(self, event: str, **data: Any) -> None:
        if self.cb is None:
            return
        line = json.dumps({"event": event, **data}, separators=(",", ":"), default=str)
        try:
            self.cb(line)
        except Exception:
            self.dropped += 1

    def dbg(self, msg: str, *parts: Any, **fields: Any) -> None:
        if not self.debug:
            return
        text = " ".join([str(msg), *(str(p) for p in parts)])
        self.emit("debug", msg=text, **fields)

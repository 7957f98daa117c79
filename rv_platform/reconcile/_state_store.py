# rv_platform/reconcile/_state_store.py
# dataset stores for the restore engine.
# Copyright (c) 2025-2026 ReelVault
from __future__ import annotations

import asyncio
import copy
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ._types import ALL_DOMAINS, Dataset, Domain, KEYED_DOMAINS

_KEYED_NAMES = frozenset(d.value for d in KEYED_DOMAINS)
_KNOWN_NAMES = frozenset(d.value for d in ALL_DOMAINS)


def _empty(domain: str) -> Any:
    if domain in _KEYED_NAMES:
        return {}
    if domain == Domain.LOGS.value:
        return []
    return None


def _check(domain: str) -> str:
    name = domain.value if isinstance(domain, Domain) else str(domain)
    if name not in _KNOWN_NAMES:
        raise KeyError(f"unknown domain: {name}")
    return name


@dataclass
class JsonDatasetStore:
    """One JSON file per domain under ``base_path``; writes are atomic."""

    base_path: Path

    def path(self, domain: str) -> Path:
        return self.base_path / f"{_check(domain)}.json"

    def _read(self, p: Path, default: Any) -> Any:
        if not p.exists():
            return default
        try:
            return json.loads(p.read_text("utf-8"))
        except (OSError, ValueError):
            return default

    def _write_atomic(self, p: Path, data: Any) -> None:
        p.parent.mkdir(parents=True, exist_ok=True)
        tmp = p.with_suffix(p.suffix + ".tmp")
        tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), "utf-8")
        tmp.replace(p)

    async def get(self, domain: str) -> Any:
        name = _check(domain)
        return await asyncio.to_thread(self._read, self.path(name), _empty(name))

    async def put(self, domain: str, value: Any) -> None:
        await asyncio.to_thread(self._write_atomic, self.path(domain), value)


@dataclass
class MemoryDatasetStore:
    data: Dataset = field(default_factory=dict)

    async def get(self, domain: str) -> Any:
        name = _check(domain)
        if name not in self.data:
            return _empty(name)
        return copy.deepcopy(self.data[name])

    async def put(self, domain: str, value: Any) -> None:
        self.data[_check(domain)] = copy.deepcopy(value)


async def load_dataset(store: Any, domains: tuple[Domain, ...] = ALL_DOMAINS) -> Dataset:
    out: Dataset = {}
    for d in domains:
        out[d.value] = await store.get(d.value)
    return out


__all__ = ["JsonDatasetStore", "MemoryDatasetStore", "load_dataset"]

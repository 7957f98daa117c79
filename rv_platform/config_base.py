# rv_platform/config_base.py
# ReelVault - configuration defaults, loading and persistence.
# Copyright (c) 2025-2026 ReelVault
from __future__ import annotations

import copy
import json
import os
import secrets
import threading
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List

# ------------------------------------------------------------
# Base dir resolution
# ------------------------------------------------------------
def CONFIG_BASE() -> Path:
    """
    Determine the base directory for config and data files.

    Priority:
      1) $CONFIG_BASE if set
      2) /config (when running in a container that mounts /config)
      3) Project root (one level up from this file)
    """
    env = os.getenv("CONFIG_BASE")
    if env:
        return Path(env)

    if Path("/app").exists():
        return Path("/config")

    return Path(__file__).resolve().parents[1]


# Restore domain groups as the UI presents them
RESTORE_DOMAIN_GROUPS: tuple[str, ...] = (
    "settings",
    "videoRecords",
    "actorRecords",
    "newWorks",
    "logs",
    "importStats",
    "userProfile",
)

_ALLOWED_STRATEGIES: List[str] = ["smart", "local", "remote", "manual"]
_ALLOWED_COLLISIONS: List[str] = ["skip", "priority"]

# Default config structure
DEFAULT_CFG: Dict[str, Any] = {
    # --- Restore engine -------------------------------------------------------
    "restore": {
        "strategy": "smart",                            # smart | local | remote | manual
        "remote_exclusive": False,                      # remote strategy drops local-only items when True
        "retention": 5,                                 # safety snapshots kept after a confirmed restore
        "required_settings_sections": [                 # settings blob must carry these top-level sections
            "display", "dataSync", "actorSync",
        ],
        "settings_keep_local": [                        # smart strategy keeps these settings sections from local
            "webdav", "display", "userExperience",
        ],
        "legacy_collision": "skip",                     # skip = first writer wins, priority = higher status wins
        "domains": {                                    # default restore selection
            "settings": True,
            "videoRecords": True,
            "actorRecords": True,
            "newWorks": True,
            "logs": False,
            "importStats": False,
            "userProfile": True,
        },
    },

    # --- Storage ---------------------------------------------------------------
    "storage": {
        "dataset_dir": "dataset",                       # one JSON file per domain
        "safety_dir": "restore_backups",                # pre-merge safety snapshots
    },

    # --- Runtime / Diagnostics ------------------------------------------------
    "runtime": {
        "debug": False,                                 # enables DEBUG lines in the console logger
        "log_json": "",                                 # optional JSON log sink (path under CONFIG_BASE)
    },
}


# ------------------------------------------------------------
# Helpers: paths, IO, merging, normalization
# ------------------------------------------------------------
def _cfg_file() -> Path:
    return CONFIG_BASE() / "config.json"

def config_path() -> Path:
    return _cfg_file()


def _read_json(p: Path) -> Dict[str, Any]:
    with p.open("r", encoding="utf-8") as f:
        return json.load(f)


def _write_json_atomic(p: Path, data: Dict[str, Any]) -> None:
    p.parent.mkdir(parents=True, exist_ok=True)
    suffix = f".{time.time_ns()}.{os.getpid()}.{threading.get_ident()}.{secrets.token_hex(4)}.tmp"
    tmp = p.with_suffix(suffix)

    with tmp.open("w", encoding="utf-8", newline="\n") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
        f.write("\n")
    tmp.replace(p)


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)  # type: ignore[assignment]
        else:
            out[k] = v
    return out


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, Iterable):
        return [str(x) for x in value if isinstance(x, (str, int, float))]
    return []


def _normalize_domains(val: Any) -> Dict[str, bool]:
    defaults = DEFAULT_CFG["restore"]["domains"]
    src = val if isinstance(val, dict) else {}
    return {name: bool(src.get(name, defaults.get(name, False))) for name in RESTORE_DOMAIN_GROUPS}


def restore_settings(cfg: Dict[str, Any] | None = None) -> Dict[str, Any]:
    """Normalized copy of the ``restore`` section."""
    raw = dict(((cfg if cfg is not None else load_config()).get("restore")) or {})
    base = DEFAULT_CFG["restore"]

    strategy = str(raw.get("strategy", base["strategy"])).strip().lower()
    if strategy not in _ALLOWED_STRATEGIES:
        strategy = base["strategy"]

    collision = str(raw.get("legacy_collision", base["legacy_collision"])).strip().lower()
    if collision not in _ALLOWED_COLLISIONS:
        collision = base["legacy_collision"]

    try:
        retention = max(1, int(raw.get("retention", base["retention"])))
    except (TypeError, ValueError):
        retention = base["retention"]

    required = raw.get("required_settings_sections", base["required_settings_sections"])
    keep_local = raw.get("settings_keep_local", base["settings_keep_local"])

    return {
        "strategy": strategy,
        "remote_exclusive": bool(raw.get("remote_exclusive", False)),
        "retention": retention,
        "required_settings_sections": _as_list(required),
        "settings_keep_local": _as_list(keep_local),
        "legacy_collision": collision,
        "domains": _normalize_domains(raw.get("domains")),
    }


def storage_dir(cfg: Dict[str, Any], name: str) -> Path:
    storage = dict(cfg.get("storage") or {})
    rel = str(storage.get(name) or DEFAULT_CFG["storage"][name])
    p = Path(rel)
    return p if p.is_absolute() else CONFIG_BASE() / p


# ------------------------------------------------------------
# Public API
# ------------------------------------------------------------
def load_config() -> Dict[str, Any]:
    """Read config.json and deep-merge it over DEFAULT_CFG."""
    p = _cfg_file()
    user_cfg: Dict[str, Any] = {}
    if p.exists():
        try:
            user_cfg = _read_json(p)
        except (OSError, ValueError):
            user_cfg = {}

    cfg = _deep_merge(DEFAULT_CFG, user_cfg)
    cfg["restore"] = restore_settings(cfg)
    return cfg


def save_config(cfg: Dict[str, Any]) -> None:
    """Write config.json atomically; the restore section is normalized first."""
    data = dict(cfg or {})
    if "restore" in data:
        data["restore"] = restore_settings(data)
    _write_json_atomic(_cfg_file(), data)

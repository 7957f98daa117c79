# /api/restoreAPI.py
# ReelVault - Restore API (preview/apply/rollback of dataset backups)
# Copyright (c) 2025-2026 ReelVault
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Query
from fastapi.responses import JSONResponse

from rv_platform.reconcile import (
    ConcurrentSessionError,
    RestoreError,
    SessionStateError,
    SnapshotNotFoundError,
)
from services.restore import get_service

router = APIRouter(prefix="/api/restore", tags=["restore"])

# MergeResult error kind -> HTTP status
_KIND_STATUS: dict[str, int] = {
    "ConcurrentSessionError": 409,
    "SessionStateError": 409,
    "SnapshotNotFoundError": 404,
}


def _ok(payload: dict[str, Any], *, status_code: int = 200) -> JSONResponse:
    payload.setdefault("ok", True)
    return JSONResponse(payload, status_code=status_code)


def _err(msg: str, *, status_code: int = 400, extra: dict[str, Any] | None = None) -> JSONResponse:
    payload: dict[str, Any] = {"ok": False, "error": msg}
    if extra:
        payload.update(extra)
    return JSONResponse(payload, status_code=status_code)


def _from_exc(e: Exception) -> JSONResponse:
    if isinstance(e, (SnapshotNotFoundError, KeyError)):
        msg = e.message if isinstance(e, RestoreError) else str(e.args[0] if e.args else e)
        return _err(msg, status_code=404)
    if isinstance(e, (ConcurrentSessionError, SessionStateError)):
        return _err(e.message, status_code=409, extra={"detail": e.to_dict()})
    if isinstance(e, RestoreError):
        return _err(e.message, extra={"detail": e.to_dict()})
    return _err(str(e))


def _session_id(body: dict[str, Any]) -> str:
    return str(body.get("session") or body.get("session_id") or "").strip()


@router.post("/preview")
async def api_restore_preview(body: dict[str, Any] = Body(...)) -> JSONResponse:
    snapshot = body.get("snapshot")
    source = str(body.get("source") or body.get("filename") or "").strip()
    try:
        res = await get_service().preview(snapshot, source=source)
        return _ok({"session": res})
    except (RestoreError, KeyError, ValueError) as e:
        return _from_exc(e)


@router.post("/apply")
async def api_restore_apply(body: dict[str, Any] = Body(...)) -> JSONResponse:
    options = body.get("options")
    if options is not None and not isinstance(options, dict):
        return _err("options must be an object")
    try:
        res = await get_service().apply(_session_id(body), options)
    except (RestoreError, KeyError, ValueError) as e:
        return _from_exc(e)
    if res.get("success"):
        return _ok({"result": res})
    err = res.get("error") or {}
    return _err(
        str(err.get("message") or "restore failed"),
        status_code=_KIND_STATUS.get(str(err.get("kind") or ""), 400),
        extra={"result": res},
    )


@router.post("/cancel")
def api_restore_cancel(body: dict[str, Any] = Body(...)) -> JSONResponse:
    try:
        return _ok({"session": get_service().cancel(_session_id(body))})
    except (RestoreError, KeyError, ValueError) as e:
        return _from_exc(e)


@router.post("/confirm")
async def api_restore_confirm(body: dict[str, Any] = Body(...)) -> JSONResponse:
    try:
        pruned = await get_service().confirm(_session_id(body))
        return _ok({"pruned": pruned})
    except (RestoreError, KeyError, ValueError) as e:
        return _from_exc(e)


@router.post("/rollback")
async def api_restore_rollback(body: dict[str, Any] = Body(default={})) -> JSONResponse:
    sid = str((body or {}).get("snapshot_id") or "").strip() or None
    try:
        res = await get_service().rollback(sid)
        return _ok({"result": res})
    except (RestoreError, KeyError, ValueError) as e:
        return _from_exc(e)


@router.get("/backups")
async def api_restore_backups() -> JSONResponse:
    return _ok({"backups": await get_service().list_backups()})


@router.delete("/backups/{snapshot_id}")
async def api_restore_backup_delete(snapshot_id: str) -> JSONResponse:
    try:
        await get_service().delete_backup(snapshot_id)
        return _ok({"deleted": snapshot_id})
    except (RestoreError, KeyError, ValueError) as e:
        return _from_exc(e)


@router.post("/backups/cleanup")
async def api_restore_backups_cleanup(body: dict[str, Any] = Body(default={})) -> JSONResponse:
    keep = (body or {}).get("keep")
    try:
        removed = await get_service().cleanup(None if keep is None else int(keep))
        return _ok({"removed": removed})
    except (RestoreError, ValueError, TypeError) as e:
        return _err(str(e))


@router.get("/events")
def api_restore_events(limit: int = Query(50, ge=1, le=200)) -> JSONResponse:
    return _ok({"events": get_service().recent_events(limit)})


@router.get("/settings")
def api_restore_settings() -> JSONResponse:
    return _ok({"settings": get_service().settings()})


@router.post("/settings")
def api_restore_settings_update(body: dict[str, Any] = Body(...)) -> JSONResponse:
    try:
        return _ok({"settings": get_service().update_settings(body)})
    except (RestoreError, ValueError) as e:
        return _from_exc(e)

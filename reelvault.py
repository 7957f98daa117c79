# /reelvault.py
# ReelVault - dataset backup restore host
# Copyright (c) 2025-2026 ReelVault
from __future__ import annotations

import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request

from _logging import log
from api import register as register_api
from rv_platform.config_base import CONFIG_BASE, config_path, load_config
from services.restore import get_service, reset_service


@asynccontextmanager
async def _lifespan(app: FastAPI):
    cfg = load_config()
    rt = cfg.get("runtime") or {}
    if rt.get("log_json"):
        log.enable_json(str(CONFIG_BASE() / str(rt["log_json"])))
    get_service(lambda: cfg)
    log("restore host started", level="INFO", module="HOST")
    try:
        yield
    finally:
        reset_service()
        log("restore host stopped", level="INFO", module="HOST")


def create_app() -> FastAPI:
    app = FastAPI(title="ReelVault", lifespan=_lifespan)

    # Middleware to disable caching for API responses
    @app.middleware("http")
    async def cache_headers_for_api(request: Request, call_next):
        t0 = time.time()
        resp = await call_next(request)
        if request.url.path.startswith("/api/"):
            resp.headers["Cache-Control"] = "no-store"
            resp.headers["Pragma"] = "no-cache"
            resp.headers["Expires"] = "0"
        if resp.status_code >= 500:
            dt_ms = int((time.time() - t0) * 1000)
            log(f"{request.method} {request.url.path} {resp.status_code} ({dt_ms} ms)", level="ERROR", module="HOST")
        return resp

    @app.get("/api/health")
    def api_health() -> dict[str, object]:
        return {"ok": True, "config": str(config_path())}

    register_api(app)
    return app


app = create_app()


# Entry point
def main(host: str = "0.0.0.0", port: int = 8787) -> None:
    print("\nReelVault restore host running:")
    print(f"  Local:   http://127.0.0.1:{port}")
    print(f"  Bind:    {host}:{port}")
    print(f"  Config:  {config_path()} (JSON)\n")

    cfg = load_config()
    debug = bool((cfg.get("runtime") or {}).get("debug"))

    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level=("debug" if debug else "warning"),
        access_log=debug,
    )


if __name__ == "__main__":
    main()

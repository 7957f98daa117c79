from __future__ import annotations

from fastapi import FastAPI

from .restoreAPI import router as restore_router

__all__ = [
    "restore_router",
    "register",
]


def register(app: FastAPI) -> None:
    app.include_router(restore_router)

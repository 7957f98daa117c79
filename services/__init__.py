# services/__init__.py
from __future__ import annotations

from . import restore

__all__ = ["restore"]

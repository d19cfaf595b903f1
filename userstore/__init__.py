"""File-backed user record store with an HTTP API."""

from __future__ import annotations

from typing import Any

from .codec import SnapshotFile
from .config import Settings, load_settings, resolve_store_path
from .store import UserStore


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the HTTP application."""

    from .service import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "Settings",
    "SnapshotFile",
    "UserStore",
    "create_app",
    "load_settings",
    "resolve_store_path",
]

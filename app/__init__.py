"""WatchSync: TMDB content mirroring and hierarchical watch status."""

from __future__ import annotations

from importlib import import_module
from typing import Any

_LAZY_ATTRIBUTES = {
    "app": "app.main",
    "create_app": "app.main",
    "get_settings": "app.config",
}

__all__ = sorted(_LAZY_ATTRIBUTES)


def __getattr__(name: str) -> Any:
    module_name = _LAZY_ATTRIBUTES.get(name)
    if module_name is None:
        raise AttributeError(f"module 'app' has no attribute {name}")
    return getattr(import_module(module_name), name)

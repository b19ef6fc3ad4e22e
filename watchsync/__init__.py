"""Installable entry point package for the WatchSync service."""

from __future__ import annotations

from app.main import create_app

__version__ = "1.0.0"

__all__ = ["__version__", "create_app"]

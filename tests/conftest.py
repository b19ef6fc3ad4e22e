"""Pytest configuration and test helpers."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest


# Ensure the application package is importable when running tests without an
# editable install. This mirrors the expected runtime layout where ``app`` sits
# at the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.database import Database  # noqa: E402


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


@pytest.fixture
async def database(tmp_path, anyio_backend):
    """A freshly created SQLite database per test."""

    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'watchsync.db'}")
    await db.create_all()
    try:
        yield db
    finally:
        await db.dispose()

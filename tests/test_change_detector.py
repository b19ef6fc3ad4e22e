from __future__ import annotations

from datetime import date

import pytest

from app.errors import ExternalServiceError
from app.models import ContentKind
from app.services.changes import SUPPORTED_CHANGE_KEYS, ChangeDetector
from app.services.tmdb import DateWindow
from fakes import FakeTMDBClient, season_change

WINDOW = DateWindow(start=date(2024, 2, 1), end=date(2024, 2, 3))


@pytest.mark.anyio("asyncio")
async def test_unsupported_changes_are_ignored() -> None:
    tmdb = FakeTMDBClient()
    tmdb.changes[(ContentKind.SHOW, 42)] = [
        {"key": "videos", "items": []},
        {"key": "translations", "items": []},
    ]

    result = await ChangeDetector(tmdb).check_for_changes(ContentKind.SHOW, 42, WINDOW)

    assert result is None


@pytest.mark.anyio("asyncio")
async def test_no_changes_returns_none() -> None:
    result = await ChangeDetector(FakeTMDBClient()).check_for_changes(
        ContentKind.MOVIE, 550, WINDOW
    )

    assert result is None


@pytest.mark.anyio("asyncio")
async def test_supported_change_returns_raw_change_set() -> None:
    tmdb = FakeTMDBClient()
    tmdb.changes[(ContentKind.SHOW, 42)] = [
        {"key": "videos", "items": []},
        season_change(99, 100, 99),
    ]

    result = await ChangeDetector(tmdb).check_for_changes(ContentKind.SHOW, 42, WINDOW)

    assert result is not None
    assert result.keys == ["videos", "season"]
    assert result.season_ids == [99, 100]
    assert result.window == WINDOW


@pytest.mark.anyio("asyncio")
async def test_provider_failures_propagate() -> None:
    tmdb = FakeTMDBClient()
    tmdb.changes[(ContentKind.MOVIE, 550)] = ExternalServiceError("down")

    with pytest.raises(ExternalServiceError):
        await ChangeDetector(tmdb).check_for_changes(ContentKind.MOVIE, 550, WINDOW)


def test_allow_list_covers_hierarchy_keys() -> None:
    assert {"season", "episode", "seasons", "episodes", "status"} <= SUPPORTED_CHANGE_KEYS
    assert "videos" not in SUPPORTED_CHANGE_KEYS

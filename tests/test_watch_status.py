"""Status consistency across the show, season and episode hierarchy."""

from __future__ import annotations

import itertools

import pytest

from app.database import transaction
from app.db_models import Episode, Movie, Season, Show
from app.errors import ConsistencyViolation
from app.models import ContentKind, WatchStatus, WatchStatusUpdate
from app.services.cache import CacheService
from app.services.repositories import StatusRepository
from app.services.watch_status import (
    WatchStatusEngine,
    WatchStatusService,
    rollup_statuses,
)
from fakes import seed_profiles


def test_rollup_of_identical_statuses_keeps_the_status() -> None:
    for status in WatchStatus:
        assert rollup_statuses([status, status, status]) is status


def test_rollup_of_mixed_statuses_is_watching() -> None:
    for left, right in itertools.combinations(WatchStatus, 2):
        assert rollup_statuses([left, right]) is WatchStatus.WATCHING


def test_rollup_without_children_is_a_noop() -> None:
    assert rollup_statuses([]) is None


async def _seed_hierarchy(database, *, seasons: int = 2, episodes_per_season: int = 4):
    """Store show 1 with numbered seasons and episodes; return their ids."""

    async with transaction(database.session_factory) as session:
        show = Show(tmdb_id=1, title="Hierarchy", in_production=True)
        session.add(show)
        await session.flush()
        season_ids: list[int] = []
        episode_ids: dict[int, list[int]] = {}
        for season_number in range(1, seasons + 1):
            season = Season(
                show_id=show.id,
                tmdb_id=100 + season_number,
                name=f"Season {season_number}",
                season_number=season_number,
            )
            session.add(season)
            await session.flush()
            season_ids.append(season.id)
            episode_ids[season.id] = []
            for episode_number in range(1, episodes_per_season + 1):
                episode = Episode(
                    tmdb_id=1000 * season_number + episode_number,
                    show_id=show.id,
                    season_id=season.id,
                    episode_number=episode_number,
                    season_number=season_number,
                    title=f"Episode {episode_number}",
                )
                session.add(episode)
                await session.flush()
                episode_ids[season.id].append(episode.id)
        return show.id, season_ids, episode_ids


async def _favorite_all(database, profile_id, show_id, season_ids, episode_ids) -> None:
    repository = StatusRepository()
    async with transaction(database.session_factory) as session:
        await repository.add_favorites(session, ContentKind.SHOW, [(profile_id, show_id)])
        await repository.add_favorites(
            session, ContentKind.SEASON, [(profile_id, sid) for sid in season_ids]
        )
        await repository.add_favorites(
            session,
            ContentKind.EPISODE,
            [(profile_id, eid) for ids in episode_ids.values() for eid in ids],
        )


async def _status(database, profile_id, kind, item_id):
    async with database.session() as session:
        return await StatusRepository().get_status(session, profile_id, kind, item_id)


@pytest.mark.anyio("asyncio")
async def test_recursive_season_update_marks_every_episode(database) -> None:
    await seed_profiles(database.session_factory, 7)
    show_id, season_ids, episode_ids = await _seed_hierarchy(database, seasons=1)
    await _favorite_all(database, 7, show_id, season_ids, episode_ids)
    season_id = season_ids[0]
    engine = WatchStatusEngine(database.session_factory)

    changed = await engine.set_status(
        7, ContentKind.SEASON, season_id, WatchStatus.WATCHED, recursive=True
    )

    assert changed is True
    assert len(episode_ids[season_id]) == 4
    for episode_id in episode_ids[season_id]:
        assert await _status(database, 7, ContentKind.EPISODE, episode_id) is WatchStatus.WATCHED
    # The only season is watched, so the show follows.
    assert await _status(database, 7, ContentKind.SHOW, show_id) is WatchStatus.WATCHED


@pytest.mark.anyio("asyncio")
async def test_episode_update_rolls_up_to_season_and_show(database) -> None:
    await seed_profiles(database.session_factory, 7)
    show_id, season_ids, episode_ids = await _seed_hierarchy(database)
    await _favorite_all(database, 7, show_id, season_ids, episode_ids)
    engine = WatchStatusEngine(database.session_factory)
    first_season = season_ids[0]

    await engine.set_status(
        7, ContentKind.EPISODE, episode_ids[first_season][0], WatchStatus.WATCHED
    )

    assert await _status(database, 7, ContentKind.SEASON, first_season) is WatchStatus.WATCHING
    assert await _status(database, 7, ContentKind.SHOW, show_id) is WatchStatus.WATCHING

    for episode_id in episode_ids[first_season][1:]:
        await engine.set_status(7, ContentKind.EPISODE, episode_id, WatchStatus.WATCHED)

    assert await _status(database, 7, ContentKind.SEASON, first_season) is WatchStatus.WATCHED
    # The second season is untouched, so the show is still in progress.
    assert await _status(database, 7, ContentKind.SHOW, show_id) is WatchStatus.WATCHING


@pytest.mark.anyio("asyncio")
async def test_recursive_show_update_overwrites_all_descendants(database) -> None:
    await seed_profiles(database.session_factory, 7)
    show_id, season_ids, episode_ids = await _seed_hierarchy(database)
    await _favorite_all(database, 7, show_id, season_ids, episode_ids)
    engine = WatchStatusEngine(database.session_factory)
    await engine.set_status(
        7, ContentKind.EPISODE, episode_ids[season_ids[0]][0], WatchStatus.WATCHED
    )

    await engine.set_status(
        7, ContentKind.SHOW, show_id, WatchStatus.NOT_WATCHED, recursive=True
    )

    for season_id in season_ids:
        assert await _status(database, 7, ContentKind.SEASON, season_id) is WatchStatus.NOT_WATCHED
        for episode_id in episode_ids[season_id]:
            assert (
                await _status(database, 7, ContentKind.EPISODE, episode_id)
                is WatchStatus.NOT_WATCHED
            )


@pytest.mark.anyio("asyncio")
async def test_status_change_without_favorite_row_fails(database) -> None:
    await seed_profiles(database.session_factory, 7, 8)
    show_id, season_ids, episode_ids = await _seed_hierarchy(database, seasons=1)
    await _favorite_all(database, 7, show_id, season_ids, episode_ids)
    engine = WatchStatusEngine(database.session_factory)

    changed = await engine.set_status(
        8, ContentKind.SEASON, season_ids[0], WatchStatus.WATCHED, recursive=True
    )

    assert changed is False
    assert await _status(database, 7, ContentKind.SEASON, season_ids[0]) is WatchStatus.NOT_WATCHED


@pytest.mark.anyio("asyncio")
async def test_rollup_of_parent_without_child_rows_is_a_noop(database) -> None:
    await seed_profiles(database.session_factory, 7)
    show_id, _, _ = await _seed_hierarchy(database, seasons=1)
    async with transaction(database.session_factory) as session:
        await StatusRepository().add_favorites(session, ContentKind.SHOW, [(7, show_id)])
    engine = WatchStatusEngine(database.session_factory)
    await engine.set_status(7, ContentKind.SHOW, show_id, WatchStatus.WATCHED)

    result = await engine.rollup(7, ContentKind.SHOW, show_id)

    assert result is None
    assert await _status(database, 7, ContentKind.SHOW, show_id) is WatchStatus.WATCHED


@pytest.mark.anyio("asyncio")
async def test_movies_have_no_hierarchy(database) -> None:
    await seed_profiles(database.session_factory, 7)
    async with transaction(database.session_factory) as session:
        movie = Movie(tmdb_id=550, title="Standalone")
        session.add(movie)
        await session.flush()
        movie_id = movie.id
        await StatusRepository().add_favorites(session, ContentKind.MOVIE, [(7, movie_id)])
    engine = WatchStatusEngine(database.session_factory)

    assert await engine.set_status(7, ContentKind.MOVIE, movie_id, WatchStatus.WATCHED)
    assert await _status(database, 7, ContentKind.MOVIE, movie_id) is WatchStatus.WATCHED


@pytest.mark.anyio("asyncio")
async def test_service_reports_consistency_violation(database) -> None:
    await seed_profiles(database.session_factory, 7)
    service = WatchStatusService(WatchStatusEngine(database.session_factory))

    with pytest.raises(ConsistencyViolation):
        await service.update_watch_status(
            7,
            WatchStatusUpdate.model_validate(
                {"kind": "episode", "itemId": 12, "status": "WATCHED"}
            ),
        )


@pytest.mark.anyio("asyncio")
async def test_profile_shows_are_cached_until_a_status_changes(database) -> None:
    await seed_profiles(database.session_factory, 7)
    show_id, season_ids, episode_ids = await _seed_hierarchy(database, seasons=1)
    await _favorite_all(database, 7, show_id, season_ids, episode_ids)
    cache = CacheService(default_ttl=300)
    engine = WatchStatusEngine(database.session_factory, cache=cache)

    first = await engine.profile_shows(7)
    assert first[0]["status"] == "NOT_WATCHED"
    assert cache.keys() == ["profile:7:shows"]

    await engine.set_status(7, ContentKind.SHOW, show_id, WatchStatus.WATCHING)

    assert cache.keys() == []
    second = await engine.profile_shows(7)
    assert second[0]["status"] == "WATCHING"

"""Favoriting, un-favoriting and the background load of new shows."""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import func, select

from app.db_models import Episode, EpisodeWatchStatus, Season, SeasonWatchStatus, Show
from app.errors import ConsistencyViolation, ExternalServiceError, NotFoundError
from app.models import ContentKind, ShowDetails, WatchStatus
from app.services.notifications import SHOW_FAVORITE_LOADED, NotificationHub
from app.services.favorites import FavoritesService
from app.services.refresh import RefreshPipeline
from app.services.repositories import StatusRepository
from app.services.streaming_services import StreamingServiceCache
from app.services.tasks import BackgroundTaskQueue
from app.services.watch_status import WatchStatusEngine
from fakes import (
    FakeTMDBClient,
    SleepRecorder,
    build_settings,
    movie_payload,
    season_payload,
    season_summary,
    seed_profiles,
    show_payload,
)


def _tmdb_with_show() -> FakeTMDBClient:
    tmdb = FakeTMDBClient()
    tmdb.shows[42] = show_payload(
        42, seasons=[season_summary(98, 0), season_summary(99, 1)]
    )
    tmdb.seasons[(42, 0)] = season_payload(98, 0, [801])
    tmdb.seasons[(42, 1)] = season_payload(99, 1, [901, 902])
    return tmdb


class Harness:
    def __init__(self, database, tmdb: FakeTMDBClient) -> None:
        settings = build_settings()
        self.database = database
        self.tmdb = tmdb
        self.tasks = BackgroundTaskQueue()
        self.hub = NotificationHub()
        self.engine = WatchStatusEngine(database.session_factory)
        self.pipeline = RefreshPipeline(
            settings,
            database.session_factory,
            tmdb,
            StreamingServiceCache(database.session_factory),
        )
        self.service = FavoritesService(
            settings,
            database.session_factory,
            tmdb,
            self.pipeline,
            self.engine,
            self.tasks,
            self.hub,
            sleep=SleepRecorder(),
        )

    async def favorite_and_wait(self, profile_id: int, tmdb_id: int) -> dict:
        await self.tasks.start()
        try:
            result = await self.service.favorite_show(profile_id, tmdb_id)
            await self.tasks.join()
        finally:
            await self.tasks.stop()
        return result

    async def count(self, model, profile_id: int) -> int:
        async with self.database.session() as session:
            return await session.scalar(
                select(func.count()).select_from(model).where(model.profile_id == profile_id)
            )

    async def status(self, profile_id: int, kind: ContentKind, item_id: int):
        async with self.database.session() as session:
            return await StatusRepository().get_status(session, profile_id, kind, item_id)


@pytest.mark.anyio("asyncio")
async def test_new_show_loads_in_background_and_notifies(database) -> None:
    await seed_profiles(database.session_factory, 1, account_id=5)
    harness = Harness(database, _tmdb_with_show())

    result = await harness.favorite_and_wait(1, 42)

    assert result["loading"] is True
    assert result["show"]["tmdbId"] == 42
    assert await harness.count(SeasonWatchStatus, 1) == 2
    assert await harness.count(EpisodeWatchStatus, 1) == 3
    notifications = harness.hub.drain(5)
    assert [notification.event for notification in notifications] == [SHOW_FAVORITE_LOADED]
    assert notifications[0].payload["show"]["tmdbId"] == 42
    assert notifications[0].payload["show"]["status"] == "NOT_WATCHED"


@pytest.mark.anyio("asyncio")
async def test_background_load_isolates_failing_seasons(database) -> None:
    await seed_profiles(database.session_factory, 1, account_id=5)
    tmdb = _tmdb_with_show()
    tmdb.seasons[(42, 0)] = ExternalServiceError("specials unavailable")
    harness = Harness(database, tmdb)
    details = ShowDetails.model_validate(tmdb.shows[42])
    show, _ = await harness.pipeline.store_show(details)

    loaded = await harness.service.load_show_hierarchy(1, show.id, details)

    assert loaded == 1
    async with database.session() as session:
        seasons = (await session.execute(select(Season.tmdb_id))).scalars().all()
    assert seasons == [99]
    assert len(harness.hub.drain(5)) == 1


@pytest.mark.anyio("asyncio")
async def test_existing_show_is_favorited_with_its_descendants(database) -> None:
    await seed_profiles(database.session_factory, 1, 2)
    harness = Harness(database, _tmdb_with_show())
    await harness.favorite_and_wait(1, 42)

    result = await harness.favorite_and_wait(2, 42)

    assert result["loading"] is False
    assert harness.tmdb.calls_of("show") == [("show", 42)]
    assert await harness.count(SeasonWatchStatus, 2) == 2
    assert await harness.count(EpisodeWatchStatus, 2) == 3


@pytest.mark.anyio("asyncio")
async def test_cascade_favorite_keeps_existing_statuses(database) -> None:
    await seed_profiles(database.session_factory, 1)
    harness = Harness(database, _tmdb_with_show())
    await harness.favorite_and_wait(1, 42)
    async with database.session() as session:
        show_id = (await session.execute(select(Show.id))).scalar_one()
        episode_id = (
            await session.execute(select(Episode.id).where(Episode.tmdb_id == 901))
        ).scalar_one()
    await harness.engine.set_status(1, ContentKind.EPISODE, episode_id, WatchStatus.WATCHED)

    created = await harness.service.cascade_favorite(1, ContentKind.SHOW, show_id)

    assert created == 0
    assert await harness.status(1, ContentKind.EPISODE, episode_id) is WatchStatus.WATCHED


@pytest.mark.anyio("asyncio")
async def test_removing_a_show_removes_every_descendant_row(database) -> None:
    await seed_profiles(database.session_factory, 1)
    harness = Harness(database, _tmdb_with_show())
    await harness.favorite_and_wait(1, 42)
    async with database.session() as session:
        show_id = (await session.execute(select(Show.id))).scalar_one()

    removed = await harness.service.remove_favorite(1, ContentKind.SHOW, show_id)

    assert removed == 1 + 2 + 3
    assert await harness.count(SeasonWatchStatus, 1) == 0
    assert await harness.count(EpisodeWatchStatus, 1) == 0
    with pytest.raises(ConsistencyViolation):
        await harness.service.remove_favorite(1, ContentKind.SHOW, show_id)


@pytest.mark.anyio("asyncio")
async def test_removing_an_episode_rolls_up_the_season(database) -> None:
    await seed_profiles(database.session_factory, 1)
    harness = Harness(database, _tmdb_with_show())
    await harness.favorite_and_wait(1, 42)
    async with database.session() as session:
        rows = (
            await session.execute(
                select(Episode.id, Episode.season_id)
                .where(Episode.tmdb_id.in_([901, 902]))
                .order_by(Episode.tmdb_id)
            )
        ).all()
    (watched_id, season_id), (unwatched_id, _) = rows
    await harness.engine.set_status(1, ContentKind.EPISODE, watched_id, WatchStatus.WATCHED)
    assert await harness.status(1, ContentKind.SEASON, season_id) is WatchStatus.WATCHING

    await harness.service.remove_favorite(1, ContentKind.EPISODE, unwatched_id)

    assert await harness.status(1, ContentKind.SEASON, season_id) is WatchStatus.WATCHED


@pytest.mark.anyio("asyncio")
async def test_favorite_movie_fetches_unknown_movies_once(database) -> None:
    await seed_profiles(database.session_factory, 1, 2)
    tmdb = FakeTMDBClient()
    tmdb.movies[550] = movie_payload(550)
    harness = Harness(database, tmdb)

    first = await harness.service.favorite_movie(1, 550)
    second = await harness.service.favorite_movie(2, 550)

    assert first["movie"]["id"] == second["movie"]["id"]
    assert tmdb.calls_of("movie") == [("movie", 550)]
    assert await harness.status(2, ContentKind.MOVIE, first["movie"]["id"]) is (
        WatchStatus.NOT_WATCHED
    )


@pytest.mark.anyio("asyncio")
async def test_unknown_profile_and_item_are_rejected(database) -> None:
    await seed_profiles(database.session_factory, 1)
    harness = Harness(database, _tmdb_with_show())

    with pytest.raises(NotFoundError):
        await harness.service.favorite_show(404, 42)
    with pytest.raises(NotFoundError):
        await harness.service.cascade_favorite(1, ContentKind.SEASON, 12345)


@pytest.mark.anyio("asyncio")
async def test_concurrent_cascade_favorites_create_each_row_once(database) -> None:
    await seed_profiles(database.session_factory, 1, 2)
    harness = Harness(database, _tmdb_with_show())
    await harness.favorite_and_wait(1, 42)
    async with database.session() as session:
        show_id = (await session.execute(select(Show.id))).scalar_one()

    created = await asyncio.gather(
        harness.service.cascade_favorite(2, ContentKind.SHOW, show_id),
        harness.service.cascade_favorite(2, ContentKind.SHOW, show_id),
    )

    assert sum(created) == 1 + 2 + 3
    assert await harness.count(SeasonWatchStatus, 2) == 2
    assert await harness.count(EpisodeWatchStatus, 2) == 3

"""Favoriting content for a profile, including the background season load."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings
from ..database import transaction
from ..errors import ConsistencyViolation, NotFoundError
from ..models import ContentKind, SeasonSummary, ShowDetails
from .cache import CacheService, invalidate_profiles
from .mapping import map_episode, map_season, movie_summary, show_summary
from .notifications import SHOW_FAVORITE_LOADED, NotificationHub
from .refresh import RefreshPipeline
from .repositories import (
    EpisodeRepository,
    MovieRepository,
    ProfileRepository,
    SeasonRepository,
    ShowRepository,
    StatusRepository,
)
from .tasks import BackgroundTaskQueue
from .tmdb import TMDBClient
from .watch_status import WatchStatusEngine

logger = logging.getLogger(__name__)


class FavoritesService:
    """Create and remove the per-profile rows that mark content as followed."""

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        tmdb: TMDBClient,
        pipeline: RefreshPipeline,
        engine: WatchStatusEngine,
        tasks: BackgroundTaskQueue,
        notifications: NotificationHub,
        *,
        shows: ShowRepository | None = None,
        seasons: SeasonRepository | None = None,
        episodes: EpisodeRepository | None = None,
        movies: MovieRepository | None = None,
        statuses: StatusRepository | None = None,
        profiles: ProfileRepository | None = None,
        cache: CacheService | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._settings = settings
        self._session_factory = session_factory
        self._tmdb = tmdb
        self._pipeline = pipeline
        self._engine = engine
        self._tasks = tasks
        self._notifications = notifications
        self._shows = shows or ShowRepository()
        self._seasons = seasons or SeasonRepository()
        self._episodes = episodes or EpisodeRepository()
        self._movies = movies or MovieRepository()
        self._statuses = statuses or StatusRepository()
        self._profiles = profiles or ProfileRepository()
        self._cache = cache
        self._sleep = sleep

    async def favorite_show(self, profile_id: int, tmdb_id: int) -> dict[str, Any]:
        """Favorite a show by provider id.

        A show that is already stored is favorited together with its seasons
        and episodes right away. An unknown show is fetched and stored, and
        its seasons and episodes are loaded by a background job that notifies
        the profile's account when it finishes.
        """

        await self._require_profile(profile_id)
        async with self._session_factory() as session:
            existing = await self._shows.get_by_tmdb_id(session, tmdb_id)
        if existing is not None:
            await self.cascade_favorite(profile_id, ContentKind.SHOW, existing.id)
            return {"show": show_summary(existing), "loading": False}

        details = await self._tmdb.get_show_details(tmdb_id)
        show, _ = await self._pipeline.store_show(details)
        async with transaction(self._session_factory) as session:
            await self._statuses.add_favorites(
                session, ContentKind.SHOW, [(profile_id, show.id)]
            )
        invalidate_profiles(self._cache, [profile_id])

        show_id = show.id

        async def load() -> None:
            await self.load_show_hierarchy(profile_id, show_id, details)

        self._tasks.submit(f"load-show-{tmdb_id}", load)
        return {"show": show_summary(show), "loading": True}

    async def favorite_movie(self, profile_id: int, tmdb_id: int) -> dict[str, Any]:
        await self._require_profile(profile_id)
        async with self._session_factory() as session:
            movie = await self._movies.get_by_tmdb_id(session, tmdb_id)
        if movie is None:
            refreshed = await self._pipeline.refresh_movie(tmdb_id)
            movie = refreshed.row
        await self.cascade_favorite(profile_id, ContentKind.MOVIE, movie.id)
        return {"movie": movie_summary(movie)}

    async def cascade_favorite(
        self, profile_id: int, kind: ContentKind, item_id: int
    ) -> int:
        """Favorite an item and every descendant currently stored.

        Rows that already exist keep their status. Returns the number of rows
        created.
        """

        async with transaction(self._session_factory) as session:
            await self._require_item(session, kind, item_id)
            targets = await self._family(session, kind, item_id)
            created = 0
            for target_kind, target_ids in targets:
                inserted = await self._statuses.add_favorites(
                    session,
                    target_kind,
                    [(profile_id, target_id) for target_id in target_ids],
                )
                created += len(inserted)
        invalidate_profiles(self._cache, [profile_id])
        logger.info(
            "Profile %s favorited %s %s (%d new rows)",
            profile_id,
            kind.value,
            item_id,
            created,
        )
        return created

    async def remove_favorite(
        self, profile_id: int, kind: ContentKind, item_id: int
    ) -> int:
        """Remove an item and its descendants from the profile's favorites."""

        async with transaction(self._session_factory) as session:
            if await self._statuses.get_status(session, profile_id, kind, item_id) is None:
                raise ConsistencyViolation(
                    f"Profile {profile_id} has not favorited {kind.value} {item_id}"
                )
            targets = await self._family(session, kind, item_id)
            removed = 0
            for target_kind, target_ids in reversed(targets):
                removed += await self._statuses.remove_favorites(
                    session, profile_id, target_kind, target_ids
                )
            await self._rollup_parents(session, profile_id, kind, item_id)
        invalidate_profiles(self._cache, [profile_id])
        return removed

    async def load_show_hierarchy(
        self, profile_id: int, show_id: int, details: ShowDetails
    ) -> int:
        """Store every season and episode of a newly favorited show.

        Seasons are independent: one that fails is logged and the others are
        still stored. Returns the number of seasons stored.
        """

        loaded = 0
        for summary in details.seasons:
            await self._sleep(self._settings.tmdb_request_delay_seconds)
            try:
                await self._load_season(show_id, details.id, summary)
            except Exception:
                logger.exception(
                    "Failed to load season %s of show %s for profile %s",
                    summary.season_number,
                    details.id,
                    profile_id,
                )
                continue
            loaded += 1

        await self._notify_loaded(profile_id, show_id)
        return loaded

    async def _load_season(
        self, show_id: int, show_tmdb_id: int, summary: SeasonSummary
    ) -> None:
        season_details = await self._tmdb.get_season_details(
            show_tmdb_id, summary.season_number
        )
        async with transaction(self._session_factory) as session:
            profile_ids = await self._statuses.profiles_for(
                session, ContentKind.SHOW, show_id
            )
            season, _ = await self._seasons.upsert(session, map_season(show_id, summary))
            await self._statuses.add_favorites(
                session,
                ContentKind.SEASON,
                [(profile_id, season.id) for profile_id in profile_ids],
            )
            for episode_details in season_details.episodes:
                episode, _ = await self._episodes.upsert(
                    session, map_episode(show_id, season.id, episode_details)
                )
                await self._statuses.add_favorites(
                    session,
                    ContentKind.EPISODE,
                    [(profile_id, episode.id) for profile_id in profile_ids],
                )
        invalidate_profiles(self._cache, profile_ids)

    async def _notify_loaded(self, profile_id: int, show_id: int) -> None:
        try:
            async with self._session_factory() as session:
                accounts = await self._profiles.account_ids(session, [profile_id])
                show = await self._shows.get(session, show_id)
                status = await self._statuses.get_status(
                    session, profile_id, ContentKind.SHOW, show_id
                )
            account_id = accounts.get(profile_id)
            if account_id is None or show is None:
                return
            await self._notifications.notify(
                account_id,
                SHOW_FAVORITE_LOADED,
                {
                    "message": "Show data has been fully loaded",
                    "profileId": profile_id,
                    "show": show_summary(show, status),
                },
            )
        except Exception:  # pragma: no cover - background safety net
            logger.exception(
                "Failed to notify profile %s that show %s finished loading",
                profile_id,
                show_id,
            )

    async def _family(
        self, session: AsyncSession, kind: ContentKind, item_id: int
    ) -> list[tuple[ContentKind, list[int]]]:
        """The item followed by its descendants, root first."""

        family: list[tuple[ContentKind, list[int]]] = [(kind, [item_id])]
        if kind is ContentKind.SHOW:
            family.append(
                (ContentKind.SEASON, await self._seasons.ids_for_show(session, item_id))
            )
            family.append(
                (ContentKind.EPISODE, await self._episodes.ids_for_show(session, item_id))
            )
        elif kind is ContentKind.SEASON:
            family.append(
                (
                    ContentKind.EPISODE,
                    await self._episodes.ids_for_season(session, item_id),
                )
            )
        return family

    async def _rollup_parents(
        self, session: AsyncSession, profile_id: int, kind: ContentKind, item_id: int
    ) -> None:
        if kind is ContentKind.EPISODE:
            episode = await self._episodes.get(session, item_id)
            if episode is not None:
                await self._engine.rollup_in(
                    session, profile_id, ContentKind.SEASON, episode.season_id
                )
                await self._engine.rollup_in(
                    session, profile_id, ContentKind.SHOW, episode.show_id
                )
        elif kind is ContentKind.SEASON:
            season = await self._seasons.get(session, item_id)
            if season is not None:
                await self._engine.rollup_in(
                    session, profile_id, ContentKind.SHOW, season.show_id
                )

    async def _require_profile(self, profile_id: int) -> None:
        async with self._session_factory() as session:
            profile = await self._profiles.get(session, profile_id)
        if profile is None:
            raise NotFoundError(f"Profile {profile_id} does not exist")

    async def _require_item(
        self, session: AsyncSession, kind: ContentKind, item_id: int
    ) -> None:
        repositories = {
            ContentKind.SHOW: self._shows,
            ContentKind.SEASON: self._seasons,
            ContentKind.EPISODE: self._episodes,
            ContentKind.MOVIE: self._movies,
        }
        if await repositories[kind].get(session, item_id) is None:
            raise NotFoundError(f"{kind.value.capitalize()} {item_id} does not exist")

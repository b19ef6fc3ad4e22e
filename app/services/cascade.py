"""Propagate show-level season changes down to seasons and episodes."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings
from ..database import transaction
from ..db_models import Show
from ..errors import ExternalServiceError
from ..models import ContentKind, SeasonSummary, ShowDetails
from .cache import CacheService, invalidate_profiles
from .changes import EPISODE_CHANGE_KEYS, ChangeSet
from .mapping import map_episode, map_season
from .repositories import EpisodeRepository, SeasonRepository, StatusRepository
from .tmdb import DateWindow, TMDBClient
from .watch_status import WatchStatusEngine

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CascadeResult:
    updated: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)
    episodes_upserted: int = 0


class CascadePropagator:
    """Upsert the seasons named in a show's change set and their episodes.

    Each season is handled on its own: a failure is logged and the remaining
    seasons are still processed.
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        tmdb: TMDBClient,
        engine: WatchStatusEngine,
        *,
        seasons: SeasonRepository | None = None,
        episodes: EpisodeRepository | None = None,
        statuses: StatusRepository | None = None,
        cache: CacheService | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._settings = settings
        self._session_factory = session_factory
        self._tmdb = tmdb
        self._engine = engine
        self._seasons = seasons or SeasonRepository()
        self._episodes = episodes or EpisodeRepository()
        self._statuses = statuses or StatusRepository()
        self._cache = cache
        self._sleep = sleep

    async def process_season_changes(
        self,
        show: Show,
        details: ShowDetails,
        change_set: ChangeSet,
        window: DateWindow | None = None,
    ) -> CascadeResult:
        window = window or change_set.window
        result = CascadeResult()
        for season_tmdb_id in change_set.season_ids:
            await self._sleep(self._settings.tmdb_request_delay_seconds)

            summary = details.find_season(season_tmdb_id)
            if summary is None:
                logger.info(
                    "Season %s is no longer listed for show %s; skipping",
                    season_tmdb_id,
                    show.tmdb_id,
                )
                result.skipped.append(season_tmdb_id)
                continue
            if summary.season_number == 0:
                result.skipped.append(season_tmdb_id)
                continue

            try:
                upserted = await self._process_season(show, details, summary, window)
            except Exception:
                logger.exception(
                    "Failed to update season %s (%s) of show %s (%s)",
                    summary.season_number,
                    season_tmdb_id,
                    show.tmdb_id,
                    show.title,
                )
                result.failed.append(season_tmdb_id)
                continue
            result.updated.append(season_tmdb_id)
            result.episodes_upserted += upserted
        return result

    async def _process_season(
        self,
        show: Show,
        details: ShowDetails,
        summary: SeasonSummary,
        window: DateWindow,
    ) -> int:
        async with transaction(self._session_factory) as session:
            season, _ = await self._seasons.upsert(session, map_season(show.id, summary))
            profile_ids = await self._statuses.profiles_for(
                session, ContentKind.SHOW, show.id
            )
            gained = await self._statuses.add_favorites(
                session,
                ContentKind.SEASON,
                [(profile_id, season.id) for profile_id in profile_ids],
            )
            for profile_id, _ in gained:
                await self._engine.apply_new_content_downgrade(session, profile_id, show.id)
        invalidate_profiles(self._cache, profile_ids)

        if not await self._has_episode_changes(summary.id, window):
            return 0

        season_details = await self._tmdb.get_season_details(
            details.id, summary.season_number
        )
        async with transaction(self._session_factory) as session:
            profile_ids = await self._statuses.profiles_for(
                session, ContentKind.SHOW, show.id
            )
            reopened: set[int] = set()
            for episode_details in season_details.episodes:
                episode, _ = await self._episodes.upsert(
                    session, map_episode(show.id, season.id, episode_details)
                )
                gained = await self._statuses.add_favorites(
                    session,
                    ContentKind.EPISODE,
                    [(profile_id, episode.id) for profile_id in profile_ids],
                )
                reopened.update(profile_id for profile_id, _ in gained)
            for profile_id in sorted(reopened):
                await self._engine.apply_new_content_downgrade(
                    session, profile_id, show.id, season.id
                )
        invalidate_profiles(self._cache, profile_ids)
        logger.info(
            "Stored %d episodes for season %s of show %s",
            len(season_details.episodes),
            summary.season_number,
            show.tmdb_id,
        )
        return len(season_details.episodes)

    async def _has_episode_changes(self, season_tmdb_id: int, window: DateWindow) -> bool:
        try:
            changes = await self._tmdb.get_season_changes(season_tmdb_id, window)
        except ExternalServiceError as exc:
            logger.warning(
                "Could not check season %s for episode changes: %s", season_tmdb_id, exc
            )
            return False
        return any(change.key in EPISODE_CHANGE_KEYS for change in changes)

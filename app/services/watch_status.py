"""Hierarchical watch-status mutations and rollup."""

from __future__ import annotations

import logging
from typing import Any, Iterable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..database import transaction
from ..errors import ConsistencyViolation
from ..models import ContentKind, WatchStatus, WatchStatusUpdate
from .cache import CacheService, invalidate_profiles, profile_key
from .mapping import show_summary
from .repositories import EpisodeRepository, SeasonRepository, StatusRepository

logger = logging.getLogger(__name__)


def rollup_statuses(statuses: Iterable[WatchStatus]) -> WatchStatus | None:
    """Collapse child statuses into the parent status.

    A single distinct status is inherited as-is, a mix yields ``WATCHING`` and
    an empty input yields ``None`` (leave the parent alone).
    """

    distinct = set(statuses)
    if not distinct:
        return None
    if len(distinct) == 1:
        return next(iter(distinct))
    return WatchStatus.WATCHING


class WatchStatusEngine:
    """Keep show, season and episode statuses consistent per profile."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        statuses: StatusRepository | None = None,
        seasons: SeasonRepository | None = None,
        episodes: EpisodeRepository | None = None,
        cache: CacheService | None = None,
    ):
        self._session_factory = session_factory
        self._statuses = statuses or StatusRepository()
        self._seasons = seasons or SeasonRepository()
        self._episodes = episodes or EpisodeRepository()
        self._cache = cache

    async def set_status(
        self,
        profile_id: int,
        kind: ContentKind,
        item_id: int,
        status: WatchStatus,
        *,
        recursive: bool = False,
    ) -> bool:
        """Set a status and re-derive the ancestors in one transaction.

        Returns ``False`` without touching anything when the profile has no
        row for the item.
        """

        async with transaction(self._session_factory) as session:
            changed = await self.apply_status(
                session, profile_id, kind, item_id, status, recursive=recursive
            )
        if changed:
            invalidate_profiles(self._cache, [profile_id])
        return changed

    async def apply_status(
        self,
        session: AsyncSession,
        profile_id: int,
        kind: ContentKind,
        item_id: int,
        status: WatchStatus,
        *,
        recursive: bool = False,
    ) -> bool:
        updated = await self._statuses.update_status(
            session, profile_id, kind, [item_id], status
        )
        if not updated:
            logger.info(
                "Profile %s has no %s %s to mark %s",
                profile_id,
                kind.value,
                item_id,
                status.value,
            )
            return False
        if kind is ContentKind.MOVIE:
            return True

        if recursive:
            await self._overwrite_descendants(session, profile_id, kind, item_id, status)

        if kind is ContentKind.EPISODE:
            episode = await self._episodes.get(session, item_id)
            if episode is not None:
                await self.rollup_in(session, profile_id, ContentKind.SEASON, episode.season_id)
                await self.rollup_in(session, profile_id, ContentKind.SHOW, episode.show_id)
        elif kind is ContentKind.SEASON:
            season = await self._seasons.get(session, item_id)
            if season is not None:
                await self.rollup_in(session, profile_id, ContentKind.SHOW, season.show_id)
        return True

    async def _overwrite_descendants(
        self,
        session: AsyncSession,
        profile_id: int,
        kind: ContentKind,
        item_id: int,
        status: WatchStatus,
    ) -> None:
        if kind is ContentKind.SHOW:
            season_ids = await self._seasons.ids_for_show(session, item_id)
            episode_ids = await self._episodes.ids_for_show(session, item_id)
            await self._statuses.update_status(
                session, profile_id, ContentKind.SEASON, season_ids, status
            )
            await self._statuses.update_status(
                session, profile_id, ContentKind.EPISODE, episode_ids, status
            )
        elif kind is ContentKind.SEASON:
            episode_ids = await self._episodes.ids_for_season(session, item_id)
            await self._statuses.update_status(
                session, profile_id, ContentKind.EPISODE, episode_ids, status
            )

    async def rollup(
        self, profile_id: int, kind: ContentKind, parent_id: int
    ) -> WatchStatus | None:
        """Re-derive a season or show status from its children."""

        async with transaction(self._session_factory) as session:
            result = await self.rollup_in(session, profile_id, kind, parent_id)
        if result is not None:
            invalidate_profiles(self._cache, [profile_id])
        return result

    async def rollup_in(
        self,
        session: AsyncSession,
        profile_id: int,
        kind: ContentKind,
        parent_id: int,
    ) -> WatchStatus | None:
        children = await self._statuses.child_statuses(session, profile_id, kind, parent_id)
        result = rollup_statuses(children)
        if result is None:
            return None
        await self._statuses.update_status(session, profile_id, kind, [parent_id], result)
        return result

    async def apply_new_content_downgrade(
        self,
        session: AsyncSession,
        profile_id: int,
        show_id: int,
        season_id: int | None = None,
    ) -> None:
        """Reopen a finished season and show after new content was added."""

        if season_id is not None:
            await self._statuses.downgrade_watched(
                session, profile_id, ContentKind.SEASON, season_id
            )
        await self._statuses.downgrade_watched(
            session, profile_id, ContentKind.SHOW, show_id
        )

    async def profile_shows(self, profile_id: int) -> list[dict[str, Any]]:
        """Shows favorited by the profile, with their status."""

        async def load() -> list[dict[str, Any]]:
            async with self._session_factory() as session:
                rows = await self._statuses.shows_for_profile(session, profile_id)
            return [show_summary(show, status) for show, status in rows]

        if self._cache is None:
            return await load()
        return await self._cache.get_or_set(profile_key(profile_id, "shows"), load)


class WatchStatusService:
    """Request-facing wrapper that rejects updates on non-favorited items."""

    def __init__(self, engine: WatchStatusEngine):
        self._engine = engine

    async def update_watch_status(
        self, profile_id: int, update: WatchStatusUpdate
    ) -> None:
        changed = await self._engine.set_status(
            profile_id,
            update.kind,
            update.item_id,
            update.status,
            recursive=update.recursive,
        )
        if not changed:
            raise ConsistencyViolation(
                f"Profile {profile_id} has not favorited {update.kind.value} {update.item_id}"
            )

    async def profile_shows(self, profile_id: int) -> list[dict[str, Any]]:
        return await self._engine.profile_shows(profile_id)

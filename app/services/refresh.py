"""Fetch full details for a changed item and upsert the stored copy."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Generic, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings
from ..database import transaction
from ..db_models import Movie, Show
from ..models import ContentKind, MovieDetails, ShowDetails
from .cache import CacheService, invalidate_profiles
from .mapping import map_movie, map_show
from .repositories import MovieRepository, ShowRepository, StatusRepository
from .streaming_services import StreamingServiceCache
from .tmdb import TMDBClient

logger = logging.getLogger(__name__)

RowT = TypeVar("RowT", Show, Movie)
DetailsT = TypeVar("DetailsT", ShowDetails, MovieDetails)


@dataclass(slots=True)
class Refreshed(Generic[RowT, DetailsT]):
    row: RowT
    details: DetailsT
    created: bool


class RefreshPipeline:
    """Upsert shows and movies by provider id, together with their genres
    and streaming services, in a single transaction per item."""

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        tmdb: TMDBClient,
        streaming_services: StreamingServiceCache,
        *,
        shows: ShowRepository | None = None,
        movies: MovieRepository | None = None,
        statuses: StatusRepository | None = None,
        cache: CacheService | None = None,
    ):
        self._settings = settings
        self._session_factory = session_factory
        self._tmdb = tmdb
        self._streaming_services = streaming_services
        self._shows = shows or ShowRepository()
        self._movies = movies or MovieRepository()
        self._statuses = statuses or StatusRepository()
        self._cache = cache

    async def fetch_show(self, tmdb_id: int) -> ShowDetails:
        return await self._tmdb.get_show_details(tmdb_id)

    async def fetch_movie(self, tmdb_id: int) -> MovieDetails:
        return await self._tmdb.get_movie_details(tmdb_id)

    async def refresh_show(self, tmdb_id: int) -> Refreshed[Show, ShowDetails]:
        details = await self.fetch_show(tmdb_id)
        show, created = await self.store_show(details)
        return Refreshed(row=show, details=details, created=created)

    async def refresh_movie(self, tmdb_id: int) -> Refreshed[Movie, MovieDetails]:
        details = await self.fetch_movie(tmdb_id)
        movie, created = await self.store_movie(details)
        return Refreshed(row=movie, details=details, created=created)

    async def store_show(self, details: ShowDetails) -> tuple[Show, bool]:
        known = await self._streaming_services.ensure_loaded()
        mapped = map_show(details, known, self._settings.show_fallback_service_id)
        async with transaction(self._session_factory) as session:
            show, created = await self._shows.upsert(
                session,
                mapped.values,
                genres=mapped.genres,
                service_ids=mapped.service_ids,
            )
            profile_ids = await self._statuses.profiles_for(
                session, ContentKind.SHOW, show.id
            )
        logger.info(
            "%s show %s (%s)", "Inserted" if created else "Updated", show.tmdb_id, show.title
        )
        invalidate_profiles(self._cache, profile_ids)
        return show, created

    async def store_movie(self, details: MovieDetails) -> tuple[Movie, bool]:
        known = await self._streaming_services.ensure_loaded()
        mapped = map_movie(details, known, self._settings.movie_fallback_service_id)
        async with transaction(self._session_factory) as session:
            movie, created = await self._movies.upsert(
                session,
                mapped.values,
                genres=mapped.genres,
                service_ids=mapped.service_ids,
            )
            profile_ids = await self._statuses.profiles_for(
                session, ContentKind.MOVIE, movie.id
            )
        logger.info(
            "%s movie %s (%s)",
            "Inserted" if created else "Updated",
            movie.tmdb_id,
            movie.title,
        )
        invalidate_profiles(self._cache, profile_ids)
        return movie, created

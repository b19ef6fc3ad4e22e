"""Storage access for mirrored content, associations and watch status.

Repositories are stateless: every method takes the :class:`AsyncSession` it
runs on, so callers decide which calls share a transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Sequence, TypeVar

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import InstrumentedAttribute

from ..db_models import (
    Episode,
    EpisodeWatchStatus,
    Genre,
    Movie,
    MovieGenre,
    MovieService,
    MovieWatchStatus,
    Profile,
    Season,
    SeasonWatchStatus,
    Show,
    ShowGenre,
    ShowService,
    ShowWatchStatus,
)
from ..models import ContentKind, WatchStatus

logger = logging.getLogger(__name__)

ContentT = TypeVar("ContentT", Show, Season, Episode, Movie)

INACTIVE_SHOW_STATUSES = ("Canceled", "Ended")

_DIALECT_INSERTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


def _insert(session: AsyncSession, model: type) -> Any:
    """Dialect insert construct supporting ``ON CONFLICT`` clauses."""

    dialect = session.get_bind().dialect.name
    try:
        return _DIALECT_INSERTS[dialect](model)
    except KeyError:
        raise NotImplementedError(
            f"Conflict-aware inserts are not available for {dialect}"
        ) from None


async def _upsert_by_tmdb_id(
    session: AsyncSession,
    model: type[ContentT],
    values: dict[str, Any],
    *,
    immutable: Sequence[str] = (),
) -> tuple[ContentT, bool]:
    """Insert or update a row keyed by its provider id.

    Returns the row and whether it was created. Columns listed in
    ``immutable`` are only written on insert. Concurrent writers of the same
    provider id resolve through the unique constraint, so the last one wins.
    """

    tmdb_id = values["tmdb_id"]
    existing_id = await session.scalar(select(model.id).where(model.tmdb_id == tmdb_id))
    updates = {
        key: value
        for key, value in values.items()
        if key not in immutable and key not in ("id", "tmdb_id")
    }
    updates["updated_at"] = datetime.utcnow()
    await session.execute(
        _insert(session, model)
        .values(**values)
        .on_conflict_do_update(index_elements=["tmdb_id"], set_=updates)
    )
    result = await session.execute(
        select(model)
        .where(model.tmdb_id == tmdb_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one(), existing_id is None


async def _sync_links(
    session: AsyncSession,
    link_model: type,
    owner_column: InstrumentedAttribute,
    owner_id: int,
    target_column: InstrumentedAttribute,
    target_ids: Iterable[int],
) -> None:
    """Make the owner's link rows match ``target_ids`` exactly."""

    result = await session.execute(
        select(target_column).where(owner_column == owner_id)
    )
    current = set(result.scalars().all())
    wanted = list(dict.fromkeys(target_ids))

    stale = current.difference(wanted)
    if stale:
        await session.execute(
            delete(link_model).where(
                owner_column == owner_id, target_column.in_(stale)
            )
        )
    missing = [target_id for target_id in wanted if target_id not in current]
    if missing:
        await session.execute(
            _insert(session, link_model)
            .values(
                [
                    {owner_column.key: owner_id, target_column.key: target_id}
                    for target_id in missing
                ]
            )
            .on_conflict_do_nothing()
        )


async def _ensure_genres(
    session: AsyncSession, genres: Sequence[tuple[int, str | None]]
) -> list[int]:
    """Create missing genre rows and return the ids in input order."""

    names = dict(genres)
    if not names:
        return []
    statement = _insert(session, Genre).values(
        [{"id": genre_id, "name": name} for genre_id, name in names.items()]
    )
    await session.execute(
        statement.on_conflict_do_update(
            index_elements=["id"],
            set_={"name": func.coalesce(statement.excluded.name, Genre.name)},
        )
    )
    return list(names)


class ShowRepository:
    async def get(self, session: AsyncSession, show_id: int) -> Show | None:
        return await session.get(Show, show_id)

    async def get_by_tmdb_id(self, session: AsyncSession, tmdb_id: int) -> Show | None:
        result = await session.execute(select(Show).where(Show.tmdb_id == tmdb_id))
        return result.scalar_one_or_none()

    async def upsert(
        self,
        session: AsyncSession,
        values: dict[str, Any],
        *,
        genres: Sequence[tuple[int, str | None]] = (),
        service_ids: Sequence[int] = (),
    ) -> tuple[Show, bool]:
        show, created = await _upsert_by_tmdb_id(session, Show, values)
        genre_ids = await _ensure_genres(session, genres)
        await _sync_links(
            session, ShowGenre, ShowGenre.show_id, show.id, ShowGenre.genre_id, genre_ids
        )
        await _sync_links(
            session,
            ShowService,
            ShowService.show_id,
            show.id,
            ShowService.streaming_service_id,
            service_ids,
        )
        return show, created

    async def genre_ids(self, session: AsyncSession, show_id: int) -> list[int]:
        result = await session.execute(
            select(ShowGenre.genre_id)
            .where(ShowGenre.show_id == show_id)
            .order_by(ShowGenre.genre_id)
        )
        return list(result.scalars().all())

    async def service_ids(self, session: AsyncSession, show_id: int) -> list[int]:
        result = await session.execute(
            select(ShowService.streaming_service_id)
            .where(ShowService.show_id == show_id)
            .order_by(ShowService.streaming_service_id)
        )
        return list(result.scalars().all())

    async def working_set(self, session: AsyncSession) -> list[Show]:
        """Shows still in production and not cancelled or ended."""

        result = await session.execute(
            select(Show)
            .where(
                Show.in_production.is_(True),
                or_(Show.status.is_(None), Show.status.not_in(INACTIVE_SHOW_STATUSES)),
            )
            .order_by(Show.id)
        )
        return list(result.scalars().all())


class SeasonRepository:
    async def get(self, session: AsyncSession, season_id: int) -> Season | None:
        return await session.get(Season, season_id)

    async def get_by_tmdb_id(
        self, session: AsyncSession, tmdb_id: int
    ) -> Season | None:
        result = await session.execute(select(Season).where(Season.tmdb_id == tmdb_id))
        return result.scalar_one_or_none()

    async def upsert(
        self, session: AsyncSession, values: dict[str, Any]
    ) -> tuple[Season, bool]:
        return await _upsert_by_tmdb_id(session, Season, values, immutable=("show_id",))

    async def ids_for_show(self, session: AsyncSession, show_id: int) -> list[int]:
        result = await session.execute(
            select(Season.id).where(Season.show_id == show_id).order_by(Season.id)
        )
        return list(result.scalars().all())


class EpisodeRepository:
    async def get(self, session: AsyncSession, episode_id: int) -> Episode | None:
        return await session.get(Episode, episode_id)

    async def upsert(
        self, session: AsyncSession, values: dict[str, Any]
    ) -> tuple[Episode, bool]:
        return await _upsert_by_tmdb_id(
            session, Episode, values, immutable=("show_id", "season_id")
        )

    async def ids_for_season(self, session: AsyncSession, season_id: int) -> list[int]:
        result = await session.execute(
            select(Episode.id).where(Episode.season_id == season_id).order_by(Episode.id)
        )
        return list(result.scalars().all())

    async def ids_for_show(self, session: AsyncSession, show_id: int) -> list[int]:
        result = await session.execute(
            select(Episode.id).where(Episode.show_id == show_id).order_by(Episode.id)
        )
        return list(result.scalars().all())


class MovieRepository:
    async def get(self, session: AsyncSession, movie_id: int) -> Movie | None:
        return await session.get(Movie, movie_id)

    async def get_by_tmdb_id(
        self, session: AsyncSession, tmdb_id: int
    ) -> Movie | None:
        result = await session.execute(select(Movie).where(Movie.tmdb_id == tmdb_id))
        return result.scalar_one_or_none()

    async def upsert(
        self,
        session: AsyncSession,
        values: dict[str, Any],
        *,
        genres: Sequence[tuple[int, str | None]] = (),
        service_ids: Sequence[int] = (),
    ) -> tuple[Movie, bool]:
        movie, created = await _upsert_by_tmdb_id(session, Movie, values)
        genre_ids = await _ensure_genres(session, genres)
        await _sync_links(
            session,
            MovieGenre,
            MovieGenre.movie_id,
            movie.id,
            MovieGenre.genre_id,
            genre_ids,
        )
        await _sync_links(
            session,
            MovieService,
            MovieService.movie_id,
            movie.id,
            MovieService.streaming_service_id,
            service_ids,
        )
        return movie, created

    async def working_set(
        self, session: AsyncSession, *, active_window_days: int, today: date | None = None
    ) -> list[Movie]:
        """Movies released recently, not yet released, or with no known date."""

        cutoff = (today or date.today()) - timedelta(days=active_window_days)
        result = await session.execute(
            select(Movie)
            .where(or_(Movie.release_date.is_(None), Movie.release_date >= cutoff))
            .order_by(Movie.id)
        )
        return list(result.scalars().all())


class ProfileRepository:
    async def get(self, session: AsyncSession, profile_id: int) -> Profile | None:
        return await session.get(Profile, profile_id)

    async def account_ids(
        self, session: AsyncSession, profile_ids: Iterable[int]
    ) -> dict[int, int]:
        ids = list(set(profile_ids))
        if not ids:
            return {}
        result = await session.execute(
            select(Profile.id, Profile.account_id).where(Profile.id.in_(ids))
        )
        return {profile_id: account_id for profile_id, account_id in result.all()}


@dataclass(frozen=True, slots=True)
class _StatusTable:
    model: type
    item_column: InstrumentedAttribute


_STATUS_TABLES: dict[ContentKind, _StatusTable] = {
    ContentKind.SHOW: _StatusTable(ShowWatchStatus, ShowWatchStatus.show_id),
    ContentKind.SEASON: _StatusTable(SeasonWatchStatus, SeasonWatchStatus.season_id),
    ContentKind.EPISODE: _StatusTable(
        EpisodeWatchStatus, EpisodeWatchStatus.episode_id
    ),
    ContentKind.MOVIE: _StatusTable(MovieWatchStatus, MovieWatchStatus.movie_id),
}


class StatusRepository:
    """Per-profile favorite rows and their watch status."""

    async def get_status(
        self, session: AsyncSession, profile_id: int, kind: ContentKind, item_id: int
    ) -> WatchStatus | None:
        table = _STATUS_TABLES[kind]
        result = await session.execute(
            select(table.model.status).where(
                table.model.profile_id == profile_id, table.item_column == item_id
            )
        )
        return result.scalar_one_or_none()

    async def update_status(
        self,
        session: AsyncSession,
        profile_id: int,
        kind: ContentKind,
        item_ids: Sequence[int],
        status: WatchStatus,
    ) -> int:
        """Set ``status`` on existing rows; return the number of rows touched."""

        if not item_ids:
            return 0
        table = _STATUS_TABLES[kind]
        result = await session.execute(
            update(table.model)
            .where(
                table.model.profile_id == profile_id,
                table.item_column.in_(list(item_ids)),
            )
            .values(status=status, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def downgrade_watched(
        self, session: AsyncSession, profile_id: int, kind: ContentKind, item_id: int
    ) -> bool:
        """Move a WATCHED row back to WATCHING; other statuses are untouched."""

        table = _STATUS_TABLES[kind]
        result = await session.execute(
            update(table.model)
            .where(
                table.model.profile_id == profile_id,
                table.item_column == item_id,
                table.model.status == WatchStatus.WATCHED,
            )
            .values(status=WatchStatus.WATCHING, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)

    async def add_favorites(
        self,
        session: AsyncSession,
        kind: ContentKind,
        pairs: Iterable[tuple[int, int]],
    ) -> list[tuple[int, int]]:
        """Insert missing ``(profile_id, item_id)`` rows as NOT_WATCHED.

        Existing rows keep their status. Returns only the pairs that were
        inserted.
        """

        wanted = list(dict.fromkeys(pairs))
        if not wanted:
            return []
        table = _STATUS_TABLES[kind]
        result = await session.execute(
            _insert(session, table.model)
            .values(
                [
                    {
                        "profile_id": profile_id,
                        table.item_column.key: item_id,
                        "status": WatchStatus.NOT_WATCHED,
                    }
                    for profile_id, item_id in wanted
                ]
            )
            .on_conflict_do_nothing()
            .returning(table.model.profile_id, table.item_column)
        )
        created = {(profile_id, item_id) for profile_id, item_id in result.all()}
        return [pair for pair in wanted if pair in created]

    async def remove_favorites(
        self,
        session: AsyncSession,
        profile_id: int,
        kind: ContentKind,
        item_ids: Sequence[int],
    ) -> int:
        if not item_ids:
            return 0
        table = _STATUS_TABLES[kind]
        result = await session.execute(
            delete(table.model)
            .where(
                table.model.profile_id == profile_id,
                table.item_column.in_(list(item_ids)),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def profiles_for(
        self, session: AsyncSession, kind: ContentKind, item_id: int
    ) -> list[int]:
        """Profiles that favorite the item."""

        table = _STATUS_TABLES[kind]
        result = await session.execute(
            select(table.model.profile_id)
            .where(table.item_column == item_id)
            .order_by(table.model.profile_id)
        )
        return list(result.scalars().all())

    async def child_statuses(
        self,
        session: AsyncSession,
        profile_id: int,
        parent_kind: ContentKind,
        parent_id: int,
    ) -> set[WatchStatus]:
        """Distinct statuses of the parent's direct children for the profile."""

        if parent_kind is ContentKind.SEASON:
            statement = (
                select(EpisodeWatchStatus.status)
                .join(Episode, Episode.id == EpisodeWatchStatus.episode_id)
                .where(
                    EpisodeWatchStatus.profile_id == profile_id,
                    Episode.season_id == parent_id,
                )
            )
        elif parent_kind is ContentKind.SHOW:
            statement = (
                select(SeasonWatchStatus.status)
                .join(Season, Season.id == SeasonWatchStatus.season_id)
                .where(
                    SeasonWatchStatus.profile_id == profile_id,
                    Season.show_id == parent_id,
                )
            )
        else:
            raise ValueError(f"{parent_kind.value} has no children")
        result = await session.execute(statement.distinct())
        return set(result.scalars().all())

    async def shows_for_profile(
        self, session: AsyncSession, profile_id: int
    ) -> list[tuple[Show, WatchStatus]]:
        result = await session.execute(
            select(Show, ShowWatchStatus.status)
            .join(ShowWatchStatus, ShowWatchStatus.show_id == Show.id)
            .where(ShowWatchStatus.profile_id == profile_id)
            .order_by(Show.title, Show.id)
        )
        return [(show, status) for show, status in result.all()]

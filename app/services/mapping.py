"""Field-by-field mapping of provider payloads onto stored rows, and of
stored rows onto client payloads."""

from __future__ import annotations

from collections.abc import Container
from dataclasses import dataclass, field
from typing import Any

from ..db_models import Movie, Show
from ..models import (
    EpisodeDetails,
    MovieDetails,
    SeasonDetails,
    SeasonSummary,
    ShowDetails,
    WatchStatus,
)
from ..utils import (
    get_episode_to_air_id,
    get_us_mpa_rating,
    get_us_network,
    get_us_rating,
    get_us_watch_providers,
)


@dataclass(slots=True)
class MappedContent:
    """Column values of a show or movie plus its membership sets."""

    values: dict[str, Any]
    genres: list[tuple[int, str | None]] = field(default_factory=list)
    service_ids: list[int] = field(default_factory=list)


def map_show(
    details: ShowDetails,
    known_service_ids: Container[int],
    fallback_service_id: int,
) -> MappedContent:
    values = {
        "tmdb_id": details.id,
        "title": details.name,
        "description": details.overview,
        "release_date": details.first_air_date,
        "poster_image": details.poster_path,
        "backdrop_image": details.backdrop_path,
        "user_rating": details.vote_average,
        "content_rating": get_us_rating(details.content_ratings),
        "season_count": details.number_of_seasons or 0,
        "episode_count": details.number_of_episodes or 0,
        "status": details.status,
        "type": details.type,
        "in_production": details.in_production,
        "last_air_date": details.last_air_date,
        "last_episode_to_air": get_episode_to_air_id(details.last_episode_to_air),
        "next_episode_to_air": get_episode_to_air_id(details.next_episode_to_air),
        "network": get_us_network(details.networks),
    }
    return MappedContent(
        values=values,
        genres=[(genre.id, genre.name) for genre in details.genres],
        service_ids=get_us_watch_providers(
            details.watch_providers, known_service_ids, fallback_service_id
        ),
    )


def map_season(
    show_id: int, season: SeasonSummary | SeasonDetails, episode_count: int | None = None
) -> dict[str, Any]:
    if episode_count is None:
        episode_count = getattr(season, "episode_count", None)
        if episode_count is None:
            episode_count = len(getattr(season, "episodes", []))
    return {
        "show_id": show_id,
        "tmdb_id": season.id,
        "name": season.name,
        "overview": season.overview,
        "season_number": season.season_number,
        "release_date": season.air_date,
        "poster_image": season.poster_path,
        "number_of_episodes": episode_count,
    }


def map_episode(show_id: int, season_id: int, episode: EpisodeDetails) -> dict[str, Any]:
    return {
        "tmdb_id": episode.id,
        "show_id": show_id,
        "season_id": season_id,
        "episode_number": episode.episode_number,
        "episode_type": episode.episode_type or "standard",
        "season_number": episode.season_number,
        "title": episode.name,
        "overview": episode.overview,
        "air_date": episode.air_date,
        "runtime": episode.runtime or 0,
        "still_image": episode.still_path,
    }


def map_movie(
    details: MovieDetails,
    known_service_ids: Container[int],
    fallback_service_id: int,
) -> MappedContent:
    values = {
        "tmdb_id": details.id,
        "title": details.title,
        "description": details.overview,
        "release_date": details.release_date,
        "runtime": details.runtime or 0,
        "poster_image": details.poster_path,
        "backdrop_image": details.backdrop_path,
        "user_rating": details.vote_average,
        "mpa_rating": get_us_mpa_rating(details.release_dates),
    }
    return MappedContent(
        values=values,
        genres=[(genre.id, genre.name) for genre in details.genres],
        service_ids=get_us_watch_providers(
            details.watch_providers, known_service_ids, fallback_service_id
        ),
    )


def show_summary(show: Show, status: WatchStatus | None = None) -> dict[str, Any]:
    """Client-facing view of a stored show."""

    payload: dict[str, Any] = {
        "id": show.id,
        "tmdbId": show.tmdb_id,
        "title": show.title,
        "contentRating": show.content_rating,
        "network": show.network,
        "inProduction": show.in_production,
        "seasonCount": show.season_count,
        "episodeCount": show.episode_count,
    }
    if status is not None:
        payload["status"] = status.value
    return payload


def movie_summary(movie: Movie, status: WatchStatus | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": movie.id,
        "tmdbId": movie.tmdb_id,
        "title": movie.title,
        "mpaRating": movie.mpa_rating,
        "releaseDate": movie.release_date.isoformat() if movie.release_date else None,
    }
    if status is not None:
        payload["status"] = status.value
    return payload

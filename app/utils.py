"""Utility helpers for the WatchSync service."""

from __future__ import annotations

from collections.abc import Container, Iterable

from .models import (
    ChangeItem,
    ContentRatings,
    EpisodeReference,
    Network,
    ReleaseDates,
    WatchProviders,
)

US_REGION = "US"
DEFAULT_TV_RATING = "TV-G"
DEFAULT_MOVIE_RATING = "PR"
# Release types 3 and 4 are theatrical and digital releases.
_PREFERRED_RELEASE_TYPES = (3, 4)


def get_us_rating(content_ratings: ContentRatings) -> str:
    """Return the US TV content rating, defaulting to ``TV-G``."""

    for result in content_ratings.results:
        if result.iso_3166_1 == US_REGION and result.rating:
            return result.rating
    return DEFAULT_TV_RATING


def get_us_mpa_rating(release_dates: ReleaseDates) -> str:
    """Return the US MPA certification of a movie's primary release."""

    for country in release_dates.results:
        if country.iso_3166_1 != US_REGION:
            continue
        certified = [entry for entry in country.release_dates if entry.certification]
        for release_type in _PREFERRED_RELEASE_TYPES:
            for entry in certified:
                if entry.type == release_type:
                    return entry.certification
        if certified:
            return certified[0].certification
    return DEFAULT_MOVIE_RATING


def get_us_network(networks: Iterable[Network]) -> str | None:
    for network in networks:
        if network.origin_country == US_REGION:
            return network.name
    return None


def get_episode_to_air_id(episode: EpisodeReference | None) -> int | None:
    return episode.id if episode is not None else None


def get_us_watch_providers(
    providers: WatchProviders,
    known_service_ids: Container[int],
    fallback_service_id: int,
) -> list[int]:
    """Return the US flat-rate streaming service ids we know about.

    Content without any US entry is attributed to ``fallback_service_id``.
    Unknown provider ids are dropped so associations always reference a
    stored streaming service.
    """

    region = providers.results.get(US_REGION)
    if region is None or not region.flatrate:
        candidates = [fallback_service_id]
    else:
        candidates = [offer.provider_id for offer in region.flatrate]

    service_ids: list[int] = []
    for service_id in candidates:
        if service_id in known_service_ids and service_id not in service_ids:
            service_ids.append(service_id)
    return service_ids


def filter_unique_season_ids(items: Iterable[ChangeItem]) -> list[int]:
    """Return distinct season ids referenced by season change items, in order."""

    seen: set[int] = set()
    season_ids: list[int] = []
    for item in items:
        value = item.value
        if not isinstance(value, dict):
            continue
        raw_id = value.get("season_id")
        try:
            season_id = int(raw_id)
        except (TypeError, ValueError):
            continue
        if season_id not in seen:
            seen.add(season_id)
            season_ids.append(season_id)
    return season_ids

"""Pydantic models describing provider payloads and API request bodies."""

from __future__ import annotations

import enum
from datetime import date
from typing import Annotated, Any

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field


class WatchStatus(str, enum.Enum):
    """Tri-state progress of a profile through a piece of content."""

    NOT_WATCHED = "NOT_WATCHED"
    WATCHING = "WATCHING"
    WATCHED = "WATCHED"


class ContentKind(str, enum.Enum):
    """Variants of the mirrored catalog content."""

    SHOW = "show"
    SEASON = "season"
    EPISODE = "episode"
    MOVIE = "movie"


def _blank_to_none(value: object) -> object:
    # The provider reports unknown dates as empty strings.
    if isinstance(value, str) and not value.strip():
        return None
    return value


OptionalDate = Annotated[date | None, BeforeValidator(_blank_to_none)]


class ProviderModel(BaseModel):
    """Base for provider payloads: unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class ChangeItem(ProviderModel):
    id: str | None = None
    action: str | None = None
    time: str | None = None
    value: Any = None


class Change(ProviderModel):
    """One change category reported for an item within a date window."""

    key: str
    items: list[ChangeItem] = Field(default_factory=list)


class ChangesResponse(ProviderModel):
    changes: list[Change] = Field(default_factory=list)


class Genre(ProviderModel):
    id: int
    name: str | None = None


class Network(ProviderModel):
    id: int | None = None
    name: str
    origin_country: str | None = None


class ContentRating(ProviderModel):
    iso_3166_1: str
    rating: str = ""


class ContentRatings(ProviderModel):
    results: list[ContentRating] = Field(default_factory=list)


class ReleaseDate(ProviderModel):
    certification: str = ""
    type: int | None = None


class CountryReleaseDates(ProviderModel):
    iso_3166_1: str
    release_dates: list[ReleaseDate] = Field(default_factory=list)


class ReleaseDates(ProviderModel):
    results: list[CountryReleaseDates] = Field(default_factory=list)


class ProviderOffer(ProviderModel):
    provider_id: int
    provider_name: str | None = None


class RegionWatchProviders(ProviderModel):
    flatrate: list[ProviderOffer] = Field(default_factory=list)


class WatchProviders(ProviderModel):
    results: dict[str, RegionWatchProviders] = Field(default_factory=dict)


class EpisodeReference(ProviderModel):
    id: int


class SeasonSummary(ProviderModel):
    """Season entry embedded in the show details payload."""

    id: int
    name: str = ""
    overview: str | None = None
    season_number: int
    air_date: OptionalDate = None
    poster_path: str | None = None
    episode_count: int = 0


class ShowDetails(ProviderModel):
    id: int
    name: str
    overview: str | None = None
    first_air_date: OptionalDate = None
    last_air_date: OptionalDate = None
    poster_path: str | None = None
    backdrop_path: str | None = None
    vote_average: float = 0.0
    number_of_episodes: int | None = 0
    number_of_seasons: int | None = 0
    status: str | None = None
    type: str | None = None
    in_production: bool = False
    genres: list[Genre] = Field(default_factory=list)
    networks: list[Network] = Field(default_factory=list)
    seasons: list[SeasonSummary] = Field(default_factory=list)
    last_episode_to_air: EpisodeReference | None = None
    next_episode_to_air: EpisodeReference | None = None
    content_ratings: ContentRatings = Field(default_factory=ContentRatings)
    watch_providers: WatchProviders = Field(
        default_factory=WatchProviders, alias="watch/providers"
    )

    def find_season(self, season_tmdb_id: int) -> SeasonSummary | None:
        for season in self.seasons:
            if season.id == season_tmdb_id:
                return season
        return None


class EpisodeDetails(ProviderModel):
    id: int
    name: str = ""
    overview: str | None = None
    episode_number: int
    season_number: int
    episode_type: str | None = None
    air_date: OptionalDate = None
    runtime: int | None = None
    still_path: str | None = None


class SeasonDetails(ProviderModel):
    """Full season payload, including its episode list."""

    id: int
    name: str = ""
    overview: str | None = None
    season_number: int
    air_date: OptionalDate = None
    poster_path: str | None = None
    episodes: list[EpisodeDetails] = Field(default_factory=list)


class MovieDetails(ProviderModel):
    id: int
    title: str
    overview: str | None = None
    release_date: OptionalDate = None
    runtime: int | None = None
    poster_path: str | None = None
    backdrop_path: str | None = None
    vote_average: float = 0.0
    genres: list[Genre] = Field(default_factory=list)
    release_dates: ReleaseDates = Field(default_factory=ReleaseDates)
    watch_providers: WatchProviders = Field(
        default_factory=WatchProviders, alias="watch/providers"
    )


class WatchStatusUpdate(BaseModel):
    """Body of a watch-status change request."""

    model_config = ConfigDict(populate_by_name=True)

    kind: ContentKind
    item_id: int = Field(validation_alias=AliasChoices("itemId", "item_id"))
    status: WatchStatus
    recursive: bool = False


class FavoriteShowRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tmdb_id: int = Field(validation_alias=AliasChoices("showId", "tmdbId", "tmdb_id"))


class FavoriteMovieRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tmdb_id: int = Field(validation_alias=AliasChoices("movieId", "tmdbId", "tmdb_id"))

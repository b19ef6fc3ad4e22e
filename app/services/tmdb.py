"""Client for the change and details endpoints of The Movie Database (TMDB)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from ..config import Settings
from ..errors import ExternalServiceError, ProviderNotFoundError, RateLimitError
from ..models import (
    Change,
    ChangesResponse,
    ContentKind,
    MovieDetails,
    SeasonDetails,
    ShowDetails,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass(frozen=True, slots=True)
class DateWindow:
    """Inclusive date range used when asking the provider for changes."""

    start: date
    end: date

    @classmethod
    def lookback(cls, days: int, *, today: date | None = None) -> "DateWindow":
        end = today or date.today()
        return cls(start=end - timedelta(days=days), end=end)

    def as_params(self) -> dict[str, str]:
        return {
            "start_date": self.start.isoformat(),
            "end_date": self.end.isoformat(),
        }


class TMDBClient:
    """Thin wrapper around the TMDB HTTP API.

    Every call either returns a validated payload or raises an
    :class:`~app.errors.ExternalServiceError`. Nothing is retried here; the
    caller decides whether to skip the item or wait for the next pass.
    """

    _CHANGES_PATHS = {
        ContentKind.SHOW: "/tv/{id}/changes",
        ContentKind.MOVIE: "/movie/{id}/changes",
        ContentKind.SEASON: "/tv/season/{id}/changes",
    }

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        if not settings.tmdb_api_token:
            raise ValueError("TMDB token is required when initialising TMDBClient")
        self._settings = settings
        self._client = http_client

    def _headers(self) -> dict[str, str]:
        return {
            "accept": "application/json",
            "Authorization": f"Bearer {self._settings.tmdb_api_token}",
            "User-Agent": f"{self._settings.app_name} (watchsync)",
        }

    async def get_changes(
        self, kind: ContentKind, tmdb_id: int, window: DateWindow
    ) -> list[Change]:
        """Return the change categories recorded for an item in the window."""

        try:
            path = self._CHANGES_PATHS[kind]
        except KeyError:
            raise ValueError(f"Changes are not tracked for {kind.value}") from None
        payload = await self._get(
            path.format(id=tmdb_id),
            params=window.as_params(),
            context=f"changes for {kind.value} {tmdb_id}",
        )
        response = self._parse(
            ChangesResponse, payload, context=f"changes for {kind.value} {tmdb_id}"
        )
        return response.changes

    async def get_show_changes(self, tmdb_id: int, window: DateWindow) -> list[Change]:
        return await self.get_changes(ContentKind.SHOW, tmdb_id, window)

    async def get_movie_changes(self, tmdb_id: int, window: DateWindow) -> list[Change]:
        return await self.get_changes(ContentKind.MOVIE, tmdb_id, window)

    async def get_season_changes(
        self, season_tmdb_id: int, window: DateWindow
    ) -> list[Change]:
        return await self.get_changes(ContentKind.SEASON, season_tmdb_id, window)

    async def get_show_details(self, tmdb_id: int) -> ShowDetails:
        context = f"show details for {tmdb_id}"
        payload = await self._get(
            f"/tv/{tmdb_id}",
            params={"append_to_response": "content_ratings,watch/providers"},
            context=context,
        )
        return self._parse(ShowDetails, payload, context=context)

    async def get_movie_details(self, tmdb_id: int) -> MovieDetails:
        context = f"movie details for {tmdb_id}"
        payload = await self._get(
            f"/movie/{tmdb_id}",
            params={
                "append_to_response": "release_dates,watch/providers",
                "language": "en-US",
            },
            context=context,
        )
        return self._parse(MovieDetails, payload, context=context)

    async def get_season_details(
        self, show_tmdb_id: int, season_number: int
    ) -> SeasonDetails:
        """Return a season of a show, including its episodes."""

        context = f"season {season_number} of show {show_tmdb_id}"
        payload = await self._get(
            f"/tv/{show_tmdb_id}/season/{season_number}",
            params=None,
            context=context,
        )
        return self._parse(SeasonDetails, payload, context=context)

    async def _get(
        self, path: str, *, params: dict[str, Any] | None, context: str
    ) -> dict[str, Any]:
        try:
            response = await self._client.get(
                path, params=params, headers=self._headers()
            )
        except httpx.HTTPError as exc:
            logger.warning("TMDB request for %s failed: %s", context, exc)
            raise ExternalServiceError(
                f"Unable to reach TMDB for {context}: {exc.__class__.__name__}"
            ) from exc

        if response.status_code == 429:
            retry_after = _coerce_int(response.headers.get("retry-after"))
            logger.warning(
                "TMDB rate limit reached for %s (retry after %s)", context, retry_after
            )
            raise RateLimitError(
                f"TMDB rate limit reached for {context}", retry_after=retry_after
            )
        if response.status_code == 404:
            raise ProviderNotFoundError(f"TMDB has no {context}")
        if response.status_code >= 400:
            message = self._error_message(response)
            logger.warning(
                "TMDB %s for %s: %s", response.status_code, context, message
            )
            raise ExternalServiceError(
                f"TMDB error for {context}: {message}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise ExternalServiceError(
                f"TMDB returned a non-JSON body for {context}"
            ) from exc
        if not isinstance(data, dict):
            raise ExternalServiceError(f"Unexpected TMDB payload for {context}")
        return data

    @staticmethod
    def _parse(model: type[ModelT], payload: dict[str, Any], *, context: str) -> ModelT:
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            logger.warning(
                "TMDB payload for %s did not match %s: %s",
                context,
                model.__name__,
                exc.errors(include_url=False),
            )
            raise ExternalServiceError(
                f"TMDB payload for {context} has an unexpected shape"
            ) from exc

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text or response.reason_phrase
        if isinstance(data, dict):
            return str(
                data.get("status_message")
                or data.get("message")
                or response.reason_phrase
            )
        return response.reason_phrase


def _coerce_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None

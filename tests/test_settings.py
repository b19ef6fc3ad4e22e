"""Configuration settings behaviour tests."""

from __future__ import annotations

import pytest

from app.config import Settings


def test_defaults_match_sync_schedule() -> None:
    settings = Settings(_env_file=None)

    assert settings.tmdb_api_token is None
    assert str(settings.tmdb_api_url).rstrip("/") == "https://api.themoviedb.org/3"
    assert settings.show_sync_interval_seconds == 86_400
    assert settings.movie_sync_interval_seconds == 604_800
    assert settings.show_change_lookback_days == 2
    assert settings.movie_change_lookback_days == 10
    assert settings.tmdb_request_delay_seconds == 0.5
    assert settings.movie_active_window_days == 180
    assert settings.response_cache_seconds == 300
    assert settings.sync_on_startup is False


def test_environment_aliases_are_honoured() -> None:
    settings = Settings(
        _env_file=None,
        TMDB_TOKEN="secret",
        SHOW_SYNC_INTERVAL="7200",
        TMDB_REQUEST_DELAY="1.5",
        SYNC_ON_STARTUP="true",
        CACHE_TTL="0",
    )

    assert settings.tmdb_api_token == "secret"
    assert settings.show_sync_interval_seconds == 7200
    assert settings.tmdb_request_delay_seconds == 1.5
    assert settings.sync_on_startup is True
    assert settings.response_cache_seconds == 0


def test_blank_token_is_treated_as_missing() -> None:
    """Whitespace-only tokens should disable the provider client."""

    settings = Settings(_env_file=None, TMDB_TOKEN="   ")

    assert settings.tmdb_api_token is None


def test_movie_lookback_cannot_be_shorter_than_show_lookback() -> None:
    with pytest.raises(ValueError, match="MOVIE_CHANGE_LOOKBACK_DAYS must not be shorter"):
        Settings(
            _env_file=None,
            SHOW_CHANGE_LOOKBACK_DAYS=5,
            MOVIE_CHANGE_LOOKBACK_DAYS=3,
        )


def test_lookback_is_limited_to_provider_history() -> None:
    with pytest.raises(ValueError):
        Settings(_env_file=None, MOVIE_CHANGE_LOOKBACK_DAYS=30)


def test_sync_interval_has_a_floor() -> None:
    with pytest.raises(ValueError):
        Settings(_env_file=None, SHOW_SYNC_INTERVAL=60)


def test_package_exposes_cached_settings_lazily() -> None:
    import app
    from app.config import get_settings

    assert app.get_settings is get_settings
    with pytest.raises(AttributeError):
        app.not_a_setting  # noqa: B018

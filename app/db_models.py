"""SQLAlchemy ORM models backing the persistent state."""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base
from .models import WatchStatus


def _status_column() -> Mapped[WatchStatus]:
    return mapped_column(
        Enum(WatchStatus, native_enum=False, length=16, name="watch_status"),
        default=WatchStatus.NOT_WATCHED,
        nullable=False,
    )


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class Profile(Base):
    """A viewer profile; only its owning account is consumed here."""

    __tablename__ = "profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(Integer, index=True)
    name: Mapped[str] = mapped_column(String(120))


class Genre(Base):
    __tablename__ = "genres"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str | None] = mapped_column(String(120), nullable=True)


class StreamingService(Base):
    __tablename__ = "streaming_services"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(200))


class Show(TimestampMixin, Base):
    """Mirrored TV show metadata."""

    __tablename__ = "shows"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tmdb_id: Mapped[int] = mapped_column(Integer, unique=True)
    title: Mapped[str] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    release_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    poster_image: Mapped[str | None] = mapped_column(String(255), nullable=True)
    backdrop_image: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_rating: Mapped[float] = mapped_column(Float, default=0.0)
    content_rating: Mapped[str | None] = mapped_column(String(32), nullable=True)
    season_count: Mapped[int] = mapped_column(Integer, default=0)
    episode_count: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str | None] = mapped_column(String(64), nullable=True)
    type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    in_production: Mapped[bool] = mapped_column(Boolean, default=False)
    last_air_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    last_episode_to_air: Mapped[int | None] = mapped_column(Integer, nullable=True)
    next_episode_to_air: Mapped[int | None] = mapped_column(Integer, nullable=True)
    network: Mapped[str | None] = mapped_column(String(120), nullable=True)

    seasons: Mapped[list["Season"]] = relationship(
        back_populates="show", cascade="all, delete-orphan"
    )


class Season(TimestampMixin, Base):
    __tablename__ = "seasons"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    show_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("shows.id", ondelete="CASCADE"), index=True
    )
    tmdb_id: Mapped[int] = mapped_column(Integer, unique=True)
    name: Mapped[str] = mapped_column(String(255))
    overview: Mapped[str | None] = mapped_column(Text, nullable=True)
    season_number: Mapped[int] = mapped_column(Integer)
    release_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    poster_image: Mapped[str | None] = mapped_column(String(255), nullable=True)
    number_of_episodes: Mapped[int] = mapped_column(Integer, default=0)

    show: Mapped[Show] = relationship(back_populates="seasons")
    episodes: Mapped[list["Episode"]] = relationship(
        back_populates="season", cascade="all, delete-orphan"
    )


class Episode(TimestampMixin, Base):
    __tablename__ = "episodes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tmdb_id: Mapped[int] = mapped_column(Integer, unique=True)
    show_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("shows.id", ondelete="CASCADE"), index=True
    )
    season_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("seasons.id", ondelete="CASCADE"), index=True
    )
    episode_number: Mapped[int] = mapped_column(Integer)
    episode_type: Mapped[str] = mapped_column(String(32), default="standard")
    season_number: Mapped[int] = mapped_column(Integer)
    title: Mapped[str] = mapped_column(String(255))
    overview: Mapped[str | None] = mapped_column(Text, nullable=True)
    air_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    runtime: Mapped[int] = mapped_column(Integer, default=0)
    still_image: Mapped[str | None] = mapped_column(String(255), nullable=True)

    season: Mapped[Season] = relationship(back_populates="episodes")


class Movie(TimestampMixin, Base):
    """Mirrored movie metadata; movies have no children."""

    __tablename__ = "movies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tmdb_id: Mapped[int] = mapped_column(Integer, unique=True)
    title: Mapped[str] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    release_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    runtime: Mapped[int] = mapped_column(Integer, default=0)
    poster_image: Mapped[str | None] = mapped_column(String(255), nullable=True)
    backdrop_image: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_rating: Mapped[float] = mapped_column(Float, default=0.0)
    mpa_rating: Mapped[str | None] = mapped_column(String(32), nullable=True)


class ShowGenre(Base):
    __tablename__ = "show_genres"

    show_id: Mapped[int] = mapped_column(
        ForeignKey("shows.id", ondelete="CASCADE"), primary_key=True
    )
    genre_id: Mapped[int] = mapped_column(
        ForeignKey("genres.id", ondelete="CASCADE"), primary_key=True
    )


class ShowService(Base):
    __tablename__ = "show_services"

    show_id: Mapped[int] = mapped_column(
        ForeignKey("shows.id", ondelete="CASCADE"), primary_key=True
    )
    streaming_service_id: Mapped[int] = mapped_column(
        ForeignKey("streaming_services.id", ondelete="CASCADE"), primary_key=True
    )


class MovieGenre(Base):
    __tablename__ = "movie_genres"

    movie_id: Mapped[int] = mapped_column(
        ForeignKey("movies.id", ondelete="CASCADE"), primary_key=True
    )
    genre_id: Mapped[int] = mapped_column(
        ForeignKey("genres.id", ondelete="CASCADE"), primary_key=True
    )


class MovieService(Base):
    __tablename__ = "movie_services"

    movie_id: Mapped[int] = mapped_column(
        ForeignKey("movies.id", ondelete="CASCADE"), primary_key=True
    )
    streaming_service_id: Mapped[int] = mapped_column(
        ForeignKey("streaming_services.id", ondelete="CASCADE"), primary_key=True
    )


class ShowWatchStatus(Base):
    __tablename__ = "show_watch_status"

    profile_id: Mapped[int] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True
    )
    show_id: Mapped[int] = mapped_column(
        ForeignKey("shows.id", ondelete="CASCADE"), primary_key=True
    )
    status: Mapped[WatchStatus] = _status_column()
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class SeasonWatchStatus(Base):
    __tablename__ = "season_watch_status"

    profile_id: Mapped[int] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True
    )
    season_id: Mapped[int] = mapped_column(
        ForeignKey("seasons.id", ondelete="CASCADE"), primary_key=True
    )
    status: Mapped[WatchStatus] = _status_column()
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class EpisodeWatchStatus(Base):
    __tablename__ = "episode_watch_status"

    profile_id: Mapped[int] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True
    )
    episode_id: Mapped[int] = mapped_column(
        ForeignKey("episodes.id", ondelete="CASCADE"), primary_key=True
    )
    status: Mapped[WatchStatus] = _status_column()
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class MovieWatchStatus(Base):
    __tablename__ = "movie_watch_status"

    profile_id: Mapped[int] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True
    )
    movie_id: Mapped[int] = mapped_column(
        ForeignKey("movies.id", ondelete="CASCADE"), primary_key=True
    )
    status: Mapped[WatchStatus] = _status_column()
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

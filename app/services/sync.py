"""Scheduled synchronisation of stored shows and movies with the provider."""

from __future__ import annotations

import asyncio
import enum
import logging
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings
from ..database import transaction
from ..models import ContentKind
from .cascade import CascadePropagator, CascadeResult
from .changes import ChangeDetector, ChangeSet
from .refresh import RefreshPipeline
from .repositories import MovieRepository, ShowRepository
from .streaming_services import StreamingServiceCache
from .tmdb import DateWindow

logger = logging.getLogger(__name__)

SYNCED_KINDS = (ContentKind.SHOW, ContentKind.MOVIE)


class SyncPhase(str, enum.Enum):
    IDLE = "idle"
    CHANGES_CHECKED = "changes_checked"
    NO_CHANGES_FOUND = "no_changes_found"
    CHANGES_DETECTED = "changes_detected"
    DETAILS_FETCHED = "details_fetched"
    UPSERTED = "upserted"
    CASCADE_CHECKED = "cascade_checked"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ContentUpdate:
    """Identity of a stored item due for a change check."""

    id: int
    tmdb_id: int
    title: str
    kind: ContentKind


@dataclass(slots=True)
class ItemSync:
    item: ContentUpdate
    phase: SyncPhase = SyncPhase.IDLE
    failed_phase: SyncPhase | None = None
    error: str | None = None
    cascade: CascadeResult | None = None

    @property
    def refreshed(self) -> bool:
        return self.phase is SyncPhase.DONE


@dataclass(slots=True)
class BatchResult:
    kind: ContentKind
    checked: int = 0
    refreshed: int = 0
    unchanged: int = 0
    failed: int = 0
    started_at: datetime = field(default_factory=datetime.utcnow)
    finished_at: datetime | None = None

    def record(self, outcome: ItemSync) -> None:
        self.checked += 1
        if outcome.phase is SyncPhase.FAILED:
            self.failed += 1
        elif outcome.phase is SyncPhase.NO_CHANGES_FOUND:
            self.unchanged += 1
        else:
            self.refreshed += 1


class ContentSyncService:
    """Check stored content for upstream changes and refresh what changed.

    Shows and movies run on independent intervals. Items in a batch are
    processed one at a time with a fixed delay between provider calls; a
    failing item is logged and the batch moves on.
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        detector: ChangeDetector,
        pipeline: RefreshPipeline,
        propagator: CascadePropagator,
        streaming_services: StreamingServiceCache,
        *,
        shows: ShowRepository | None = None,
        movies: MovieRepository | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._settings = settings
        self._session_factory = session_factory
        self._detector = detector
        self._pipeline = pipeline
        self._propagator = propagator
        self._streaming_services = streaming_services
        self._shows = shows or ShowRepository()
        self._movies = movies or MovieRepository()
        self._sleep = sleep
        self._locks = {ContentKind.SHOW: asyncio.Lock(), ContentKind.MOVIE: asyncio.Lock()}
        self._loop_tasks: list[asyncio.Task[None]] = []
        self._sync_jobs: dict[ContentKind, asyncio.Task[None]] = {}

    def lookback_window(self, kind: ContentKind, *, today: date | None = None) -> DateWindow:
        days = (
            self._settings.movie_change_lookback_days
            if kind is ContentKind.MOVIE
            else self._settings.show_change_lookback_days
        )
        return DateWindow.lookback(days, today=today)

    async def check_for_changes(self, item: ContentUpdate) -> ChangeSet | None:
        window = self.lookback_window(item.kind)
        return await self._detector.check_for_changes(item.kind, item.tmdb_id, window)

    async def refresh_if_changed(self, item: ContentUpdate) -> ItemSync:
        """Run one item through change detection, refresh and cascade.

        Only shows and movies are synchronised on their own; other kinds raise
        :class:`ValueError`. Any other failure is logged with the item identity
        and the phase it reached, and reported as :attr:`SyncPhase.FAILED`.
        """

        if item.kind not in SYNCED_KINDS:
            raise ValueError(f"{item.kind.value} is not synchronised on its own")
        outcome = ItemSync(item=item)
        try:
            change_set = await self.check_for_changes(item)
            outcome.phase = SyncPhase.CHANGES_CHECKED
            if change_set is None:
                outcome.phase = SyncPhase.NO_CHANGES_FOUND
                return outcome
            outcome.phase = SyncPhase.CHANGES_DETECTED

            if item.kind is ContentKind.SHOW:
                show_details = await self._pipeline.fetch_show(item.tmdb_id)
                outcome.phase = SyncPhase.DETAILS_FETCHED
                show, _ = await self._pipeline.store_show(show_details)
                outcome.phase = SyncPhase.UPSERTED
                outcome.cascade = await self._propagator.process_season_changes(
                    show, show_details, change_set
                )
                outcome.phase = SyncPhase.CASCADE_CHECKED
            elif item.kind is ContentKind.MOVIE:
                movie_details = await self._pipeline.fetch_movie(item.tmdb_id)
                outcome.phase = SyncPhase.DETAILS_FETCHED
                await self._pipeline.store_movie(movie_details)
                outcome.phase = SyncPhase.UPSERTED
        except Exception as exc:
            logger.exception(
                "Failed to sync %s %s (tmdb %s, %s) after phase %s",
                item.kind.value,
                item.id,
                item.tmdb_id,
                item.title,
                outcome.phase.value,
            )
            outcome.failed_phase = outcome.phase
            outcome.phase = SyncPhase.FAILED
            outcome.error = str(exc)
            return outcome

        outcome.phase = SyncPhase.DONE
        return outcome

    async def update_shows(self) -> BatchResult:
        async with self._locks[ContentKind.SHOW]:
            async with transaction(self._session_factory) as session:
                shows = await self._shows.working_set(session)
                items = [
                    ContentUpdate(show.id, show.tmdb_id, show.title, ContentKind.SHOW)
                    for show in shows
                ]
            return await self._run_batch(ContentKind.SHOW, items)

    async def update_movies(self) -> BatchResult:
        async with self._locks[ContentKind.MOVIE]:
            async with transaction(self._session_factory) as session:
                movies = await self._movies.working_set(
                    session, active_window_days=self._settings.movie_active_window_days
                )
                items = [
                    ContentUpdate(movie.id, movie.tmdb_id, movie.title, ContentKind.MOVIE)
                    for movie in movies
                ]
            return await self._run_batch(ContentKind.MOVIE, items)

    async def update(self, kind: ContentKind) -> BatchResult:
        if kind is ContentKind.SHOW:
            return await self.update_shows()
        if kind is ContentKind.MOVIE:
            return await self.update_movies()
        raise ValueError(f"{kind.value} is not synchronised on its own")

    async def _run_batch(
        self, kind: ContentKind, items: list[ContentUpdate]
    ) -> BatchResult:
        await self._streaming_services.load()
        logger.info("Checking %d %ss for changes", len(items), kind.value)
        result = BatchResult(kind=kind)
        for item in items:
            await self._sleep(self._settings.tmdb_request_delay_seconds)
            result.record(await self.refresh_if_changed(item))
        result.finished_at = datetime.utcnow()
        logger.info(
            "%s sync finished: %d checked, %d refreshed, %d unchanged, %d failed",
            kind.value.capitalize(),
            result.checked,
            result.refreshed,
            result.unchanged,
            result.failed,
        )
        return result

    async def start(self) -> None:
        """Launch the show and movie sync loops."""

        if self._loop_tasks:
            return
        run_now = self._settings.sync_on_startup
        self._loop_tasks = [
            asyncio.create_task(
                self._sync_loop(
                    ContentKind.SHOW, self._settings.show_sync_interval_seconds, run_now
                )
            ),
            asyncio.create_task(
                self._sync_loop(
                    ContentKind.MOVIE, self._settings.movie_sync_interval_seconds, run_now
                )
            ),
        ]

    async def stop(self) -> None:
        """Stop the sync loops and any requested batch still running."""

        tasks = [*self._loop_tasks, *self._sync_jobs.values()]
        self._loop_tasks = []
        self._sync_jobs = {}
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task

    def request_sync(self, kind: ContentKind) -> bool:
        """Run a batch in the background; ``False`` if one is already queued."""

        existing = self._sync_jobs.get(kind)
        if existing and not existing.done():
            return False

        async def _runner() -> None:
            try:
                await self.update(kind)
            except Exception as exc:  # pragma: no cover - background safety net
                logger.exception("Requested %s sync failed: %s", kind.value, exc)
            finally:
                self._sync_jobs.pop(kind, None)

        self._sync_jobs[kind] = asyncio.create_task(_runner())
        return True

    async def _sync_loop(
        self, kind: ContentKind, interval_seconds: int, run_immediately: bool
    ) -> None:
        if run_immediately:
            await self._run_scheduled(kind)
        while True:
            await asyncio.sleep(interval_seconds)
            await self._run_scheduled(kind)

    async def _run_scheduled(self, kind: ContentKind) -> None:
        try:
            await self.update(kind)
        except Exception as exc:  # pragma: no cover - background safety net
            logger.exception("Scheduled %s sync failed: %s", kind.value, exc)

"""Entry point for the FastAPI-powered WatchSync service."""

from __future__ import annotations

import json
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .config import settings
from .database import Database
from .errors import (
    ConsistencyViolation,
    ExternalServiceError,
    NotFoundError,
    PersistenceError,
    ProviderNotFoundError,
    RateLimitError,
    WatchSyncError,
)
from .models import (
    ContentKind,
    FavoriteMovieRequest,
    FavoriteShowRequest,
    WatchStatusUpdate,
)
from .services.cache import CacheService
from .services.cascade import CascadePropagator
from .services.changes import ChangeDetector
from .services.favorites import FavoritesService
from .services.notifications import NotificationHub
from .services.refresh import RefreshPipeline
from .services.streaming_services import StreamingServiceCache
from .services.sync import ContentSyncService
from .services.tasks import BackgroundTaskQueue
from .services.tmdb import TMDBClient
from .services.watch_status import WatchStatusEngine, WatchStatusService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI

_KIND_SEGMENTS = {
    "show": ContentKind.SHOW,
    "shows": ContentKind.SHOW,
    "season": ContentKind.SEASON,
    "seasons": ContentKind.SEASON,
    "episode": ContentKind.EPISODE,
    "episodes": ContentKind.EPISODE,
    "movie": ContentKind.MOVIE,
    "movies": ContentKind.MOVIE,
}


@asynccontextmanager
async def lifespan(_: FastAPI):
    exit_stack = AsyncExitStack()
    tmdb_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.tmdb_api_url),
            timeout=httpx.Timeout(20.0, connect=10.0),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    cache = CacheService(settings.response_cache_seconds)
    notifications = NotificationHub()
    tasks = BackgroundTaskQueue()
    streaming_services = StreamingServiceCache(database.session_factory)
    await streaming_services.load()
    engine = WatchStatusEngine(database.session_factory, cache=cache)

    app.state.database = database
    app.state.watch_status_service = WatchStatusService(engine)
    app.state.notification_hub = notifications

    sync_service: ContentSyncService | None = None
    if settings.tmdb_api_token:
        tmdb = TMDBClient(settings, tmdb_http_client)
        pipeline = RefreshPipeline(
            settings, database.session_factory, tmdb, streaming_services, cache=cache
        )
        propagator = CascadePropagator(
            settings, database.session_factory, tmdb, engine, cache=cache
        )
        app.state.favorites_service = FavoritesService(
            settings,
            database.session_factory,
            tmdb,
            pipeline,
            engine,
            tasks,
            notifications,
            cache=cache,
        )
        sync_service = ContentSyncService(
            settings,
            database.session_factory,
            ChangeDetector(tmdb),
            pipeline,
            propagator,
            streaming_services,
        )
        app.state.sync_service = sync_service
    else:
        logger.warning("TMDB_TOKEN is not set; content synchronisation is disabled")

    await tasks.start()
    if sync_service is not None:
        await sync_service.start()

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        if sync_service is not None:
            await sync_service.stop()
        await tasks.stop()
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Keeps mirrored TMDB content and per-profile watch status in sync",
        version="1.0.0",
        lifespan=lifespan,
    )
    register_routes(fastapi_app)
    return fastapi_app


def get_sync_service(app: FastAPI) -> ContentSyncService:
    service = getattr(app.state, "sync_service", None)
    if not isinstance(service, ContentSyncService):
        raise HTTPException(status_code=503, detail="Content synchronisation is disabled")
    return service


def get_favorites_service(app: FastAPI) -> FavoritesService:
    service = getattr(app.state, "favorites_service", None)
    if not isinstance(service, FavoritesService):
        raise HTTPException(status_code=503, detail="Favorites are unavailable")
    return service


def get_watch_status_service(app: FastAPI) -> WatchStatusService:
    service = getattr(app.state, "watch_status_service", None)
    if not isinstance(service, WatchStatusService):
        raise RuntimeError("Watch status service not initialised")
    return service


def get_notification_hub(app: FastAPI) -> NotificationHub:
    hub = getattr(app.state, "notification_hub", None)
    if not isinstance(hub, NotificationHub):
        raise RuntimeError("Notification hub not initialised")
    return hub


def error_status_code(exc: WatchSyncError) -> int:
    """HTTP status reported for a domain error."""

    if isinstance(exc, ConsistencyViolation):
        return 400
    if isinstance(exc, (NotFoundError, ProviderNotFoundError)):
        return 404
    if isinstance(exc, RateLimitError):
        return 429
    if isinstance(exc, ExternalServiceError):
        return 502
    if isinstance(exc, PersistenceError):
        return 503
    return 500


def _http_error(exc: WatchSyncError) -> HTTPException:
    status_code = error_status_code(exc)
    headers = None
    if isinstance(exc, RateLimitError) and exc.retry_after is not None:
        headers = {"Retry-After": str(exc.retry_after)}
    if status_code >= 500:
        logger.warning("Request failed with %s: %s", status_code, exc)
    return HTTPException(status_code=status_code, detail=str(exc), headers=headers)


async def _read_payload(request: Request) -> dict[str, Any]:
    try:
        payload = await request.json()
    except json.JSONDecodeError:
        payload = {}
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid payload")
    return payload


def _parse_kind(segment: str) -> ContentKind:
    try:
        return _KIND_SEGMENTS[segment.lower()]
    except KeyError:
        raise HTTPException(status_code=400, detail="Unsupported content type") from None


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    def _request_sync(kind: ContentKind) -> JSONResponse:
        service = get_sync_service(fastapi_app)
        scheduled = service.request_sync(kind)
        return JSONResponse(
            {"kind": kind.value, "scheduled": scheduled}, status_code=202
        )

    @fastapi_app.post("/api/sync/shows")
    async def sync_shows() -> JSONResponse:
        return _request_sync(ContentKind.SHOW)

    @fastapi_app.post("/api/sync/movies")
    async def sync_movies() -> JSONResponse:
        return _request_sync(ContentKind.MOVIE)

    @fastapi_app.post("/api/profiles/{profile_id}/favorites/shows")
    async def favorite_show(profile_id: int, request: Request) -> JSONResponse:
        service = get_favorites_service(fastapi_app)
        payload = await _read_payload(request)
        try:
            body = FavoriteShowRequest.model_validate(payload)
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=exc.errors()) from exc
        try:
            result = await service.favorite_show(profile_id, body.tmdb_id)
        except WatchSyncError as exc:
            raise _http_error(exc) from exc
        return JSONResponse(result, status_code=202 if result.get("loading") else 200)

    @fastapi_app.post("/api/profiles/{profile_id}/favorites/movies")
    async def favorite_movie(profile_id: int, request: Request) -> JSONResponse:
        service = get_favorites_service(fastapi_app)
        payload = await _read_payload(request)
        try:
            body = FavoriteMovieRequest.model_validate(payload)
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=exc.errors()) from exc
        try:
            result = await service.favorite_movie(profile_id, body.tmdb_id)
        except WatchSyncError as exc:
            raise _http_error(exc) from exc
        return JSONResponse(result)

    @fastapi_app.delete("/api/profiles/{profile_id}/favorites/{kind}/{item_id}")
    async def remove_favorite(profile_id: int, kind: str, item_id: int) -> dict[str, Any]:
        service = get_favorites_service(fastapi_app)
        content_kind = _parse_kind(kind)
        try:
            removed = await service.remove_favorite(profile_id, content_kind, item_id)
        except WatchSyncError as exc:
            raise _http_error(exc) from exc
        return {"kind": content_kind.value, "itemId": item_id, "removed": removed}

    @fastapi_app.put("/api/profiles/{profile_id}/watch-status")
    async def update_watch_status(profile_id: int, request: Request) -> dict[str, Any]:
        service = get_watch_status_service(fastapi_app)
        payload = await _read_payload(request)
        try:
            update = WatchStatusUpdate.model_validate(payload)
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=exc.errors()) from exc
        try:
            await service.update_watch_status(profile_id, update)
        except WatchSyncError as exc:
            raise _http_error(exc) from exc
        return {
            "success": True,
            "kind": update.kind.value,
            "itemId": update.item_id,
            "status": update.status.value,
        }

    @fastapi_app.get("/api/profiles/{profile_id}/shows")
    async def profile_shows(profile_id: int) -> dict[str, Any]:
        service = get_watch_status_service(fastapi_app)
        try:
            shows = await service.profile_shows(profile_id)
        except WatchSyncError as exc:
            raise _http_error(exc) from exc
        return {"profileId": profile_id, "shows": shows}

    @fastapi_app.get("/api/accounts/{account_id}/notifications")
    async def account_notifications(account_id: int) -> dict[str, Any]:
        hub = get_notification_hub(fastapi_app)
        return {
            "accountId": account_id,
            "notifications": [
                notification.to_payload() for notification in hub.drain(account_id)
            ],
        }


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )

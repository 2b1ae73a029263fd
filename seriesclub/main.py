"""Entry point for the FastAPI-powered SeriesClub API."""

from __future__ import annotations

import json
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import TypeVar

import httpx
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from .config import Settings, settings
from .database import Database
from .errors import FetchFailure, WriteFailure
from .models import ProfileUpdate
from .services.activity import ActivityStore, ChangeNotifier
from .services.catalog import CatalogClient
from .services.feed import FeedAggregator, FeedSessionRegistry
from .services.lookups import Resolver
from .services.profiles import ProfileStore
from .services.ranking import RankingAggregator

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI

PayloadT = TypeVar("PayloadT", bound=BaseModel)


@dataclass
class Services:
    """Collaborators shared by the route handlers."""

    catalog: CatalogClient
    profiles: ProfileStore
    activity: ActivityStore
    resolver: Resolver
    feed: FeedAggregator
    ranking: RankingAggregator
    feed_sessions: FeedSessionRegistry


def build_services(
    config: Settings,
    catalog: CatalogClient,
    profiles: ProfileStore,
    activity: ActivityStore,
) -> Services:
    """Wire the aggregators around the given stores and catalog client."""

    resolver = Resolver(catalog, profiles, timeout=config.lookup_timeout_seconds)
    feed_sessions = FeedSessionRegistry(
        config.feed_session_ttl_seconds, max_sessions=config.feed_max_sessions
    )
    activity.notifier.subscribe(feed_sessions.invalidate)
    return Services(
        catalog=catalog,
        profiles=profiles,
        activity=activity,
        resolver=resolver,
        feed=FeedAggregator(
            activity,
            resolver,
            page_size=config.feed_page_size,
            fetch_limit=config.feed_fetch_limit,
            policy=config.feed_unresolved_policy,
        ),
        ranking=RankingAggregator(
            activity,
            profiles,
            resolver,
            limit=config.ranking_limit,
            show_policy=config.ranking_unresolved_policy,
            interest_policy=config.interest_unresolved_policy,
        ),
        feed_sessions=feed_sessions,
    )


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    tmdb_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.tmdb_api_url),
            timeout=httpx.Timeout(15.0, connect=5.0),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    services = build_services(
        settings,
        CatalogClient(settings, tmdb_client),
        ProfileStore(database.session_factory),
        ActivityStore(database.session_factory, ChangeNotifier()),
    )
    fastapi_app.state.services = services
    fastapi_app.state.database = database

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Social TV-series tracking: activity feed and rankings",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_services(fastapi_app: FastAPI) -> Services:
    services = getattr(fastapi_app.state, "services", None)
    if not isinstance(services, Services):
        raise RuntimeError("Services not initialised")
    return services


class _CamelPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


class WatchedPayload(_CamelPayload):
    rating: float | None = None
    comment: str | None = Field(default=None, max_length=5_000)
    watched_at: datetime | None = None


class WatchlistPayload(_CamelPayload):
    note: str | None = Field(default=None, max_length=5_000)


class StatusPayload(_CamelPayload):
    status: str


async def _read_payload(request: Request, model: type[PayloadT]) -> PayloadT:
    try:
        payload = await request.json()
    except json.JSONDecodeError:
        payload = {}
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid payload")
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.errors()) from exc


def _service_unavailable(exc: Exception) -> HTTPException:
    if isinstance(exc, FetchFailure):
        detail = f"{exc}. Please try again shortly."
    else:
        detail = str(exc)
    return HTTPException(status_code=503, detail=detail)


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/api/shows/search")
    async def search_shows(q: str = "") -> JSONResponse:
        services = get_services(fastapi_app)
        results = await services.catalog.search_shows(q)
        return JSONResponse({"query": q, "results": [show.to_payload() for show in results]})

    @fastapi_app.get("/api/shows/{show_id}")
    async def show_details(show_id: int) -> JSONResponse:
        services = get_services(fastapi_app)
        show = await services.catalog.get_show(show_id)
        if show is None:
            raise HTTPException(status_code=404, detail=f"Show {show_id} not found")
        payload = show.to_payload()
        payload["posterUrl"] = show.poster_url()
        payload["backdropUrl"] = services.catalog.image_url(show.backdrop_path, "w780")
        return JSONResponse(payload)

    @fastapi_app.get("/api/profiles")
    async def list_profiles() -> JSONResponse:
        services = get_services(fastapi_app)
        try:
            profiles = await services.profiles.list_profiles()
        except FetchFailure as exc:
            raise _service_unavailable(exc) from exc
        return JSONResponse({"profiles": [profile.to_payload() for profile in profiles]})

    @fastapi_app.get("/api/profiles/{user_id}")
    async def get_profile(user_id: str) -> JSONResponse:
        services = get_services(fastapi_app)
        try:
            profile = await services.profiles.get_profile(user_id)
        except FetchFailure as exc:
            raise _service_unavailable(exc) from exc
        if profile is None:
            raise HTTPException(status_code=404, detail="Profile not found")
        return JSONResponse(profile.to_payload())

    @fastapi_app.put("/api/profiles/{user_id}")
    async def update_profile(request: Request, user_id: str) -> JSONResponse:
        services = get_services(fastapi_app)
        update = await _read_payload(request, ProfileUpdate)
        try:
            profile = await services.profiles.upsert_profile(user_id, update)
        except WriteFailure as exc:
            raise _service_unavailable(exc) from exc
        return JSONResponse(profile.to_payload())

    @fastapi_app.get("/api/users/{user_id}/watched")
    async def list_user_watched(user_id: str) -> JSONResponse:
        services = get_services(fastapi_app)
        try:
            records = await services.activity.list_watched(user_id)
        except FetchFailure as exc:
            raise _service_unavailable(exc) from exc
        shows = await services.resolver.shows(record.show_id for record in records)
        items = []
        for record in records:
            item = record.to_payload()
            show = shows.get(record.show_id)
            item["show"] = show.to_payload() if show is not None else None
            items.append(item)
        return JSONResponse({"items": items})

    @fastapi_app.put("/api/users/{user_id}/watched/{show_id}")
    async def upsert_watched(request: Request, user_id: str, show_id: int) -> JSONResponse:
        services = get_services(fastapi_app)
        payload = await _read_payload(request, WatchedPayload)
        try:
            record = await services.activity.upsert_watched(
                user_id,
                show_id,
                rating=payload.rating,
                comment=payload.comment,
                watched_at=payload.watched_at,
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except WriteFailure as exc:
            raise _service_unavailable(exc) from exc
        return JSONResponse(record.to_payload())

    @fastapi_app.delete("/api/watched/{record_id}")
    async def delete_watched(record_id: int) -> dict[str, bool]:
        services = get_services(fastapi_app)
        try:
            deleted = await services.activity.delete_watched(record_id)
        except WriteFailure as exc:
            raise _service_unavailable(exc) from exc
        if not deleted:
            raise HTTPException(status_code=404, detail="Watched record not found")
        return {"deleted": True}

    @fastapi_app.get("/api/users/{user_id}/watchlist")
    async def list_user_watchlist(user_id: str) -> JSONResponse:
        services = get_services(fastapi_app)
        try:
            records = await services.activity.list_watchlist(user_id)
        except FetchFailure as exc:
            raise _service_unavailable(exc) from exc
        shows = await services.resolver.shows(record.show_id for record in records)
        items = []
        for record in records:
            item = record.to_payload()
            show = shows.get(record.show_id)
            item["show"] = show.to_payload() if show is not None else None
            items.append(item)
        return JSONResponse({"items": items})

    @fastapi_app.put("/api/users/{user_id}/watchlist/{show_id}")
    async def upsert_watchlist(request: Request, user_id: str, show_id: int) -> JSONResponse:
        services = get_services(fastapi_app)
        payload = await _read_payload(request, WatchlistPayload)
        try:
            record = await services.activity.upsert_watchlist(
                user_id, show_id, note=payload.note
            )
        except WriteFailure as exc:
            raise _service_unavailable(exc) from exc
        return JSONResponse(record.to_payload())

    @fastapi_app.delete("/api/watchlist/{record_id}")
    async def delete_watchlist(record_id: int) -> dict[str, bool]:
        services = get_services(fastapi_app)
        try:
            deleted = await services.activity.delete_watchlist(record_id)
        except WriteFailure as exc:
            raise _service_unavailable(exc) from exc
        if not deleted:
            raise HTTPException(status_code=404, detail="Watchlist item not found")
        return {"deleted": True}

    @fastapi_app.get("/api/users/{user_id}/status")
    async def list_by_status(user_id: str, status: str) -> JSONResponse:
        services = get_services(fastapi_app)
        try:
            show_ids = await services.activity.list_by_status(user_id, status)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except FetchFailure as exc:
            raise _service_unavailable(exc) from exc
        return JSONResponse({"status": status, "showIds": show_ids})

    @fastapi_app.get("/api/users/{user_id}/status/{show_id}")
    async def get_status(user_id: str, show_id: int) -> JSONResponse:
        services = get_services(fastapi_app)
        try:
            record = await services.activity.get_status(user_id, show_id)
        except FetchFailure as exc:
            raise _service_unavailable(exc) from exc
        return JSONResponse({"status": record.status if record is not None else None})

    @fastapi_app.put("/api/users/{user_id}/status/{show_id}")
    async def set_status(request: Request, user_id: str, show_id: int) -> JSONResponse:
        services = get_services(fastapi_app)
        payload = await _read_payload(request, StatusPayload)
        try:
            record = await services.activity.set_status(user_id, show_id, payload.status)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except WriteFailure as exc:
            raise _service_unavailable(exc) from exc
        return JSONResponse(record.to_payload())

    @fastapi_app.delete("/api/users/{user_id}/status/{show_id}")
    async def remove_status(user_id: str, show_id: int) -> dict[str, bool]:
        services = get_services(fastapi_app)
        try:
            removed = await services.activity.remove_status(user_id, show_id)
        except WriteFailure as exc:
            raise _service_unavailable(exc) from exc
        return {"removed": removed}

    @fastapi_app.post("/api/feed")
    async def create_feed() -> JSONResponse:
        services = get_services(fastapi_app)
        try:
            session = await services.feed.load()
        except FetchFailure as exc:
            raise _service_unavailable(exc) from exc
        services.feed_sessions.add(session)
        page = await session.next_page()
        return JSONResponse(page.to_payload())

    @fastapi_app.get("/api/feed/{feed_id}/pages/{page_number}")
    async def feed_page(feed_id: str, page_number: int) -> JSONResponse:
        services = get_services(fastapi_app)
        try:
            session = services.feed_sessions.get(feed_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc.args[0])) from exc
        try:
            page = await session.page(page_number)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return JSONResponse(page.to_payload())

    @fastapi_app.get("/api/ranking")
    async def ranking_overview(user_id: str | None = Query(default=None, alias="userId")) -> JSONResponse:
        services = get_services(fastapi_app)
        return JSONResponse(await services.ranking.overview(user_id))

    @fastapi_app.get("/api/ranking/most-watched")
    async def most_watched(limit: int | None = Query(default=None, ge=1, le=500)) -> JSONResponse:
        services = get_services(fastapi_app)
        try:
            shows = await services.ranking.most_watched(limit)
        except FetchFailure as exc:
            raise _service_unavailable(exc) from exc
        return JSONResponse({"shows": [show.to_payload() for show in shows]})

    @fastapi_app.get("/api/ranking/best-rated")
    async def best_rated(limit: int | None = Query(default=None, ge=1, le=500)) -> JSONResponse:
        services = get_services(fastapi_app)
        try:
            shows = await services.ranking.best_rated(limit)
        except FetchFailure as exc:
            raise _service_unavailable(exc) from exc
        return JSONResponse({"shows": [show.to_payload() for show in shows]})

    @fastapi_app.get("/api/ranking/recent")
    async def recent_releases(limit: int | None = Query(default=None, ge=1, le=500)) -> JSONResponse:
        services = get_services(fastapi_app)
        try:
            shows = await services.ranking.recent_releases(limit)
        except FetchFailure as exc:
            raise _service_unavailable(exc) from exc
        return JSONResponse({"shows": [show.to_payload() for show in shows]})

    @fastapi_app.get("/api/ranking/most-wanted")
    async def most_wanted(limit: int | None = Query(default=None, ge=1, le=500)) -> JSONResponse:
        services = get_services(fastapi_app)
        try:
            shows = await services.ranking.watchlist_popularity(limit)
        except FetchFailure as exc:
            raise _service_unavailable(exc) from exc
        return JSONResponse({"shows": [show.to_payload() for show in shows]})

    @fastapi_app.get("/api/ranking/interest")
    async def interest_feed() -> JSONResponse:
        services = get_services(fastapi_app)
        try:
            entries = await services.ranking.interest_feed()
        except FetchFailure as exc:
            raise _service_unavailable(exc) from exc
        return JSONResponse({"entries": [entry.to_payload() for entry in entries]})

    @fastapi_app.get("/api/ranking/users")
    async def user_leaderboard(user_id: str | None = Query(default=None, alias="userId")) -> JSONResponse:
        services = get_services(fastapi_app)
        try:
            leaderboard = await services.ranking.user_leaderboard(user_id)
        except FetchFailure as exc:
            raise _service_unavailable(exc) from exc
        return JSONResponse(leaderboard.to_payload())


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "seriesclub.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )

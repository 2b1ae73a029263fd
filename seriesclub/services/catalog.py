"""Client for show metadata served by The Movie Database (TMDB)."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from ..config import Settings
from ..fallback_catalog import find_fallback_show, search_fallback_shows
from ..models import ShowSummary
from ..utils import build_image_url

logger = logging.getLogger(__name__)

_NOT_FOUND = object()


class CatalogClient:
    """Read-through access to TMDB TV metadata with a static fallback dataset."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client
        self._semaphore = asyncio.Semaphore(8)
        if not settings.tmdb_api_key:
            logger.info("TMDB API key missing, serving shows from the fallback dataset")

    @property
    def uses_fallback_only(self) -> bool:
        return not self._settings.tmdb_api_key

    async def get_show(self, show_id: int) -> ShowSummary | None:
        """Return metadata for a show, or ``None`` when the catalog has no match."""

        if self.uses_fallback_only:
            return find_fallback_show(show_id)

        payload = await self._get_json(f"/tv/{show_id}", {})
        if payload is _NOT_FOUND:
            return None
        if payload is None:
            return find_fallback_show(show_id)
        try:
            return ShowSummary.from_tmdb_payload(payload)
        except (KeyError, ValueError) as exc:
            logger.warning("TMDB returned an unusable payload for show %s: %s", show_id, exc)
            return None

    async def search_shows(self, query: str) -> list[ShowSummary]:
        """Return shows matching ``query`` in catalog relevance order."""

        normalized_query = (query or "").strip()
        if not normalized_query:
            return []
        if self.uses_fallback_only:
            return search_fallback_shows(normalized_query)

        payload = await self._get_json(
            "/search/tv",
            {"query": normalized_query, "include_adult": "false", "page": 1},
        )
        if payload is _NOT_FOUND:
            return []
        if payload is None:
            return search_fallback_shows(normalized_query)

        results = payload.get("results") or []
        shows: list[ShowSummary] = []
        for entry in results:
            if not isinstance(entry, dict) or entry.get("id") is None:
                continue
            try:
                shows.append(ShowSummary.from_tmdb_payload(entry))
            except (KeyError, ValueError):
                logger.debug("Skipping malformed TMDB search result: %s", entry)
        return shows

    @staticmethod
    def image_url(path: str | None, size: str = "w500") -> str | None:
        return build_image_url(path, size)

    async def _get_json(self, path: str, params: dict[str, Any]) -> Any:
        """Return decoded JSON, ``_NOT_FOUND`` on 404, or ``None`` when the fallback applies."""

        request_params = {
            **params,
            "language": self._settings.tmdb_language,
            "api_key": self._settings.tmdb_api_key,
        }
        try:
            async with self._semaphore:
                response = await self._client.get(path, params=request_params)
        except httpx.HTTPError as exc:
            logger.warning("TMDB request %s failed, using fallback dataset: %s", path, exc)
            return None

        if response.status_code == 404:
            return _NOT_FOUND
        if response.status_code >= 400:
            logger.warning(
                "TMDB request %s failed with %s, using fallback dataset: %s",
                path,
                response.status_code,
                response.text,
            )
            return None
        try:
            data = response.json()
        except ValueError:
            logger.warning("TMDB request %s returned invalid JSON", path)
            return None
        if not isinstance(data, dict):
            return None
        return data


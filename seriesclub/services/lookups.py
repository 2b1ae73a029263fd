"""Timeout-bounded show and profile resolution shared by the aggregators."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Hashable, Iterable, Protocol, TypeVar

from ..config import ResolutionPolicy
from ..errors import ResolutionFailure
from ..models import ShowSummary, UserProfile

logger = logging.getLogger(__name__)

T = TypeVar("T")
K = TypeVar("K", bound=Hashable)


class ShowSource(Protocol):
    async def get_show(self, show_id: int) -> ShowSummary | None: ...


class ProfileSource(Protocol):
    async def get_profile(self, user_id: str) -> UserProfile | None: ...


class Resolver:
    """Resolve shows and profiles concurrently, turning every failure into a row miss.

    Each lookup is wrapped in ``asyncio.wait_for`` so a hanging catalog or store
    call only costs its own row. Cancelling the caller cancels pending lookups.
    """

    def __init__(
        self,
        catalog: ShowSource,
        profiles: ProfileSource,
        *,
        timeout: float,
    ):
        self._catalog = catalog
        self._profiles = profiles
        self._timeout = timeout

    async def show(self, show_id: int) -> ShowSummary:
        return await self._bounded("show", show_id, self._catalog.get_show(show_id))

    async def profile(self, user_id: str) -> UserProfile:
        return await self._bounded("profile", user_id, self._profiles.get_profile(user_id))

    async def shows(self, show_ids: Iterable[int]) -> dict[int, ShowSummary | None]:
        """Resolve each distinct show id once; misses map to ``None``."""

        return await self._resolve_many(show_ids, self.show)

    async def profile_map(self, user_ids: Iterable[str]) -> dict[str, UserProfile | None]:
        return await self._resolve_many(user_ids, self.profile)

    async def _resolve_many(self, keys: Iterable[K], resolve) -> dict[K, T | None]:
        unique = list(dict.fromkeys(keys))
        if not unique:
            return {}
        results = await asyncio.gather(
            *(resolve(key) for key in unique), return_exceptions=True
        )
        resolved: dict[K, T | None] = {}
        for key, result in zip(unique, results):
            if isinstance(result, ResolutionFailure):
                logger.warning("Lookup failed: %s", result)
                resolved[key] = None
            elif isinstance(result, BaseException):
                raise result
            else:
                resolved[key] = result
        return resolved

    async def _bounded(self, kind: str, key: object, awaitable: Awaitable[T | None]) -> T:
        try:
            result = await asyncio.wait_for(awaitable, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise ResolutionFailure(kind, key, f"timed out after {self._timeout}s") from exc
        except ResolutionFailure:
            raise
        except Exception as exc:
            raise ResolutionFailure(kind, key, str(exc) or type(exc).__name__) from exc
        if result is None:
            raise ResolutionFailure(kind, key)
        return result


def apply_show_policy(
    show_id: int, show: ShowSummary | None, policy: ResolutionPolicy
) -> ShowSummary | None:
    """Return the show, a ``Show <id>`` placeholder, or ``None`` to drop the row."""

    if show is not None:
        return show
    if policy == "placeholder":
        return ShowSummary.placeholder(show_id)
    return None

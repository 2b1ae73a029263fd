"""Global activity feed: merge, sort, and page through watched/watchlist rows."""

from __future__ import annotations

import asyncio
import logging
import math
import secrets
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Protocol, Sequence

from ..config import ResolutionPolicy
from ..errors import FetchFailure, ResolutionFailure
from ..models import (
    ActivityEntry,
    ActivityKind,
    FeedPage,
    ShowSummary,
    UserProfile,
    WatchedRecord,
    WatchlistRecord,
)
from .lookups import Resolver, apply_show_policy

logger = logging.getLogger(__name__)


class ActivitySource(Protocol):
    async def list_watched(
        self, user_id: str | None = None, *, limit: int | None = None
    ) -> list[WatchedRecord]: ...

    async def list_watchlist(
        self, user_id: str | None = None, *, limit: int | None = None
    ) -> list[WatchlistRecord]: ...


@dataclass(slots=True, frozen=True)
class FeedRow:
    """A watched or watchlist record tagged with its activity kind."""

    kind: ActivityKind
    record: WatchedRecord | WatchlistRecord

    @property
    def timestamp(self) -> datetime:
        return self.record.effective_timestamp

    @property
    def key(self) -> str:
        return f"{self.kind.value}:{self.record.id}"


def merge_activity(
    watched: Sequence[WatchedRecord], watchlist: Sequence[WatchlistRecord]
) -> list[FeedRow]:
    """Tag, concatenate and sort rows newest first.

    ``list.sort`` is stable with ``reverse=True`` too, so rows sharing a
    timestamp keep their input order (watched rows before watchlist rows).
    """

    rows = [FeedRow(ActivityKind.WATCHED, record) for record in watched]
    rows.extend(FeedRow(ActivityKind.ADDED_TO_WATCHLIST, record) for record in watchlist)
    rows.sort(key=lambda row: row.timestamp, reverse=True)
    return rows


class FeedSession:
    """Frozen, sorted feed snapshot served page by page.

    Pages are resolved lazily against the same snapshot, so paging never
    re-fetches or re-sorts.
    """

    def __init__(
        self,
        rows: Sequence[FeedRow],
        resolver: Resolver,
        *,
        page_size: int,
        policy: ResolutionPolicy = "drop",
    ):
        if page_size < 1:
            raise ValueError("page_size must be positive")
        self.rows: tuple[FeedRow, ...] = tuple(rows)
        self.page_size = page_size
        self.policy = policy
        self.feed_id: str | None = None
        self.entries: list[ActivityEntry] = []
        self.pages_loaded = 0
        self._resolver = resolver
        self._lock = asyncio.Lock()

    @property
    def total_pages(self) -> int:
        return math.ceil(len(self.rows) / self.page_size)

    @property
    def all_processed(self) -> bool:
        return self.pages_loaded * self.page_size >= len(self.rows)

    async def page(self, number: int) -> FeedPage:
        """Resolve the ``number``-th (1-based) slice of the snapshot."""

        if number < 1:
            raise ValueError("Feed pages start at 1")
        start = (number - 1) * self.page_size
        end = start + self.page_size
        batch = self.rows[start:end]
        done = end >= len(self.rows)
        if not batch:
            return FeedPage(
                feed_id=self.feed_id,
                page=number,
                page_size=self.page_size,
                done=True,
                total_rows=len(self.rows),
            )

        results = await asyncio.gather(*(self._resolve_row(row) for row in batch))
        entries = [entry for entry in results if entry is not None]
        dropped = len(batch) - len(entries)
        if dropped:
            logger.info(
                "Feed page %s dropped %s of %s rows that could not be resolved",
                number,
                dropped,
                len(batch),
            )
        return FeedPage(
            feed_id=self.feed_id,
            page=number,
            page_size=self.page_size,
            entries=entries,
            dropped=dropped,
            done=done,
            total_rows=len(self.rows),
        )

    async def next_page(self) -> FeedPage:
        """Resolve the page after the last loaded one and accumulate its entries."""

        async with self._lock:
            page = await self.page(self.pages_loaded + 1)
            if not self.all_processed:
                self.pages_loaded += 1
                self.entries.extend(page.entries)
            return page

    async def _resolve_row(self, row: FeedRow) -> ActivityEntry | None:
        record = row.record
        show_result, profile_result = await asyncio.gather(
            self._resolver.show(record.show_id),
            self._resolver.profile(record.user_id),
            return_exceptions=True,
        )
        show = self._unwrap(row, show_result)
        profile = self._unwrap(row, profile_result)

        show = apply_show_policy(record.show_id, show, self.policy)
        if profile is None and self.policy == "placeholder":
            profile = UserProfile(id=record.user_id)
        if show is None or profile is None:
            return None
        return build_activity_entry(row, show, profile)

    @staticmethod
    def _unwrap(row: FeedRow, result: object):
        if isinstance(result, ResolutionFailure):
            logger.warning("Dropping feed row %s: %s", row.key, result)
            return None
        if isinstance(result, BaseException):
            raise result
        return result


def build_activity_entry(
    row: FeedRow, show: ShowSummary, profile: UserProfile
) -> ActivityEntry:
    record = row.record
    if isinstance(record, WatchedRecord):
        details = {"rating": record.rating, "comment": record.comment}
    else:
        details = {"note": record.note}
    return ActivityEntry(
        id=row.key,
        record_id=record.id,
        user_id=record.user_id,
        show_id=record.show_id,
        kind=row.kind,
        timestamp=row.timestamp,
        username=profile.username,
        show_title=show.title,
        user_avatar_url=profile.avatar,
        poster_path=show.poster_path,
        **details,
    )


class FeedAggregator:
    """Builds feed snapshots from the activity store."""

    def __init__(
        self,
        activity: ActivitySource,
        resolver: Resolver,
        *,
        page_size: int = 5,
        fetch_limit: int = 50,
        policy: ResolutionPolicy = "drop",
    ):
        self._activity = activity
        self._resolver = resolver
        self.page_size = page_size
        self.fetch_limit = fetch_limit
        self.policy = policy

    async def load(self, *, limit: int | None = None) -> FeedSession:
        """Fetch the newest rows of both kinds and freeze them into a session.

        Raises ``FetchFailure`` when either base list cannot be read.
        """

        resolved_limit = limit if limit is not None else self.fetch_limit
        watched, watchlist = await asyncio.gather(
            self._activity.list_watched(limit=resolved_limit),
            self._activity.list_watchlist(limit=resolved_limit),
            return_exceptions=True,
        )
        for result in (watched, watchlist):
            if isinstance(result, FetchFailure):
                raise result
            if isinstance(result, Exception):
                raise FetchFailure("activity feed") from result
            if isinstance(result, BaseException):
                raise result

        rows = merge_activity(watched, watchlist)
        logger.info(
            "Feed snapshot built from %s watched and %s watchlist rows",
            len(watched),
            len(watchlist),
        )
        return FeedSession(
            rows, self._resolver, page_size=self.page_size, policy=self.policy
        )


FEED_TABLES = frozenset({"watched", "watchlist"})


class FeedSessionRegistry:
    """Keeps feed snapshots addressable by id until they expire or are invalidated.

    At most ``max_sessions`` snapshots are held; adding past the cap evicts the oldest.
    """

    def __init__(
        self,
        ttl_seconds: float,
        *,
        max_sessions: int = 256,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_sessions < 1:
            raise ValueError("max_sessions must be positive")
        self._ttl = ttl_seconds
        self._max_sessions = max_sessions
        self._clock = clock
        self._sessions: dict[str, tuple[FeedSession, float]] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def add(self, session: FeedSession) -> str:
        self.prune()
        while len(self._sessions) >= self._max_sessions:
            oldest = next(iter(self._sessions))
            logger.debug("Evicting feed snapshot %s", oldest)
            del self._sessions[oldest]
        feed_id = secrets.token_urlsafe(16)
        session.feed_id = feed_id
        self._sessions[feed_id] = (session, self._clock() + self._ttl)
        return feed_id

    def get(self, feed_id: str) -> FeedSession:
        self.prune()
        stored = self._sessions.get(feed_id)
        if stored is None:
            raise KeyError(f"Feed {feed_id} not found or expired")
        return stored[0]

    def prune(self) -> None:
        now = self._clock()
        expired = [key for key, (_, expires_at) in self._sessions.items() if expires_at <= now]
        for key in expired:
            self._sessions.pop(key, None)

    def invalidate(self, table: str | None = None) -> None:
        """Drop every snapshot when a feed table changed; wired to the activity change signal."""

        if table is not None and table not in FEED_TABLES:
            return
        if self._sessions:
            logger.debug("Invalidating %s feed snapshots", len(self._sessions))
        self._sessions.clear()

"""Leaderboards computed by folding the full activity dataset."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Awaitable, Iterable, Mapping, Protocol, Sequence, TypeVar

from ..config import ResolutionPolicy
from ..errors import FetchFailure
from ..models import (
    InterestEntry,
    ShowAggregate,
    ShowInterestAggregate,
    UserAggregate,
    UserLeaderboard,
    UserProfile,
    Watcher,
    WatchedRecord,
    WatchlistRecord,
)
from ..utils import mean_rating, parse_air_date
from .feed import ActivitySource
from .lookups import Resolver, apply_show_policy

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProfileLister(Protocol):
    async def list_profiles(self) -> list[UserProfile]: ...


def fold_watched_by_show(
    records: Iterable[WatchedRecord], profiles: Mapping[str, UserProfile]
) -> dict[int, ShowAggregate]:
    """Group watched records per show, counting watches and collecting ratings."""

    aggregates: dict[int, ShowAggregate] = {}
    for record in records:
        aggregate = aggregates.get(record.show_id)
        if aggregate is None:
            aggregate = ShowAggregate(show_id=record.show_id, title=f"Show {record.show_id}")
            aggregates[record.show_id] = aggregate
        aggregate.watch_count += 1
        if record.rating is not None:
            aggregate.ratings.append(record.rating)
        profile = profiles.get(record.user_id) or UserProfile(id=record.user_id)
        aggregate.watchers.append(
            Watcher(
                user_id=record.user_id,
                username=profile.username,
                avatar_url=profile.avatar,
                rating=record.rating,
            )
        )
    for aggregate in aggregates.values():
        aggregate.average_rating = mean_rating(aggregate.ratings)
    return aggregates


def fold_watchlist_by_show(
    records: Iterable[WatchlistRecord],
) -> dict[int, ShowInterestAggregate]:
    """Group watchlist records per show, counting distinct interested users."""

    users_by_show: dict[int, list[str]] = defaultdict(list)
    for record in records:
        users = users_by_show[record.show_id]
        if record.user_id not in users:
            users.append(record.user_id)
    return {
        show_id: ShowInterestAggregate(
            show_id=show_id,
            title=f"Show {show_id}",
            want_count=len(users),
            users=users,
        )
        for show_id, users in users_by_show.items()
    }


def fold_watched_by_user(
    profiles: Sequence[UserProfile],
    records_by_user: Mapping[str, Sequence[WatchedRecord]],
) -> list[UserAggregate]:
    """Build one aggregate per profile, including profiles with nothing watched."""

    aggregates: list[UserAggregate] = []
    for profile in profiles:
        records = records_by_user.get(profile.id, ())
        aggregates.append(
            UserAggregate(
                user_id=profile.id,
                username=profile.username,
                avatar_url=profile.avatar,
                watched_count=len(records),
                average_rating=mean_rating(record.rating for record in records),
            )
        )
    return aggregates


def sort_by_air_date(aggregates: Iterable[ShowAggregate]) -> list[ShowAggregate]:
    """Newest first air date first; shows without a known date go last."""

    dated: list[tuple[Any, ShowAggregate]] = []
    undated: list[ShowAggregate] = []
    for aggregate in aggregates:
        air_date = parse_air_date(aggregate.first_air_date)
        if air_date is None:
            undated.append(aggregate)
        else:
            dated.append((air_date, aggregate))
    dated.sort(key=lambda item: item[0], reverse=True)
    return [aggregate for _, aggregate in dated] + undated


class RankingAggregator:
    """Computes most-watched, best-rated, interest and user rankings."""

    def __init__(
        self,
        activity: ActivitySource,
        profiles: ProfileLister,
        resolver: Resolver,
        *,
        limit: int = 20,
        show_policy: ResolutionPolicy = "placeholder",
        interest_policy: ResolutionPolicy = "drop",
    ):
        self._activity = activity
        self._profiles = profiles
        self._resolver = resolver
        self.limit = limit
        self.show_policy = show_policy
        self.interest_policy = interest_policy

    async def most_watched(self, limit: int | None = None) -> list[ShowAggregate]:
        aggregates = await self._show_aggregates()
        ranked = sorted(aggregates, key=lambda aggregate: aggregate.watch_count, reverse=True)
        return ranked[: self._limit(limit)]

    async def best_rated(self, limit: int | None = None) -> list[ShowAggregate]:
        aggregates = await self._show_aggregates()
        rated = [
            aggregate
            for aggregate in aggregates
            if aggregate.ratings and aggregate.average_rating > 0
        ]
        rated.sort(key=lambda aggregate: aggregate.average_rating, reverse=True)
        return rated[: self._limit(limit)]

    async def recent_releases(self, limit: int | None = None) -> list[ShowAggregate]:
        aggregates = await self._show_aggregates()
        return sort_by_air_date(aggregates)[: self._limit(limit)]

    async def watchlist_popularity(
        self, limit: int | None = None
    ) -> list[ShowInterestAggregate]:
        records = await self._fetch_base(self._activity.list_watchlist(), "watchlist records")
        folded = fold_watchlist_by_show(records)
        shows = await self._resolver.shows(folded.keys())

        aggregates: list[ShowInterestAggregate] = []
        for show_id, aggregate in folded.items():
            show = apply_show_policy(show_id, shows.get(show_id), self.show_policy)
            if show is None:
                continue
            aggregate.title = show.title
            aggregate.poster_path = show.poster_path
            aggregate.resolved = shows.get(show_id) is not None
            aggregates.append(aggregate)
        aggregates.sort(key=lambda aggregate: aggregate.want_count, reverse=True)
        if limit is None:
            return aggregates
        return aggregates[:limit]

    async def interest_feed(self) -> list[InterestEntry]:
        """Every watchlist addition with its show and user, newest first."""

        records = await self._fetch_base(self._activity.list_watchlist(), "watchlist records")
        shows, profiles = await asyncio.gather(
            self._resolver.shows(record.show_id for record in records),
            self._resolver.profile_map(record.user_id for record in records),
        )

        entries: list[InterestEntry] = []
        for record in records:
            show = apply_show_policy(
                record.show_id, shows.get(record.show_id), self.interest_policy
            )
            if show is None:
                logger.warning(
                    "Dropping watchlist entry %s: show %s unresolved",
                    record.id,
                    record.show_id,
                )
                continue
            profile = profiles.get(record.user_id) or UserProfile(id=record.user_id)
            entries.append(
                InterestEntry(
                    id=record.id,
                    show=show,
                    user_id=record.user_id,
                    username=profile.username,
                    user_avatar_url=profile.avatar,
                    note=record.note,
                    added_at=record.created_at,
                )
            )
        entries.sort(key=lambda entry: entry.added_at, reverse=True)
        return entries

    async def user_leaderboard(self, current_user_id: str | None = None) -> UserLeaderboard:
        profiles, records_by_user = await self._watched_by_profile()
        aggregates = fold_watched_by_user(profiles, records_by_user)
        aggregates.sort(key=lambda aggregate: aggregate.watched_count, reverse=True)

        current_position: int | None = None
        for position, aggregate in enumerate(aggregates, start=1):
            aggregate.position = position
            if aggregate.user_id == current_user_id:
                current_position = position
        return UserLeaderboard(entries=aggregates, current_user_position=current_position)

    async def overview(self, current_user_id: str | None = None) -> dict[str, Any]:
        """Run every view concurrently; a failed view is reported without sinking the rest."""

        views: dict[str, Awaitable[Any]] = {
            "mostWatched": self.most_watched(),
            "bestRated": self.best_rated(),
            "mostWanted": self.watchlist_popularity(self.limit),
            "recent": self.recent_releases(),
            "users": self.user_leaderboard(current_user_id),
        }
        results = await asyncio.gather(*views.values(), return_exceptions=True)

        payload: dict[str, Any] = {"errors": []}
        for name, result in zip(views.keys(), results):
            if isinstance(result, FetchFailure):
                logger.warning("Ranking view %s failed: %s", name, result)
                payload[name] = None
                payload["errors"].append(name)
            elif isinstance(result, BaseException):
                raise result
            elif isinstance(result, UserLeaderboard):
                payload[name] = result.to_payload()
            else:
                payload[name] = [item.to_payload() for item in result]
        return payload

    async def _show_aggregates(self) -> list[ShowAggregate]:
        profiles, records_by_user = await self._watched_by_profile()
        profile_map = {profile.id: profile for profile in profiles}
        records = [record for records in records_by_user.values() for record in records]
        folded = fold_watched_by_show(records, profile_map)
        shows = await self._resolver.shows(folded.keys())

        aggregates: list[ShowAggregate] = []
        for show_id, aggregate in folded.items():
            resolved = shows.get(show_id)
            show = apply_show_policy(show_id, resolved, self.show_policy)
            if show is None:
                continue
            aggregate.title = show.title
            aggregate.poster_path = show.poster_path
            aggregate.first_air_date = show.first_air_date
            aggregate.resolved = resolved is not None
            aggregates.append(aggregate)
        return aggregates

    async def _watched_by_profile(
        self,
    ) -> tuple[list[UserProfile], dict[str, list[WatchedRecord]]]:
        profiles = await self._fetch_base(self._profiles.list_profiles(), "profiles")
        results = await asyncio.gather(
            *(self._activity.list_watched(profile.id) for profile in profiles),
            return_exceptions=True,
        )
        records_by_user: dict[str, list[WatchedRecord]] = {}
        for profile, result in zip(profiles, results):
            if isinstance(result, FetchFailure):
                raise result
            if isinstance(result, Exception):
                raise FetchFailure("watched records") from result
            if isinstance(result, BaseException):
                raise result
            records_by_user[profile.id] = result
        return profiles, records_by_user

    @staticmethod
    async def _fetch_base(awaitable: Awaitable[T], source: str) -> T:
        try:
            return await awaitable
        except FetchFailure:
            raise
        except Exception as exc:
            logger.exception("Fetching %s for rankings failed", source)
            raise FetchFailure(source) from exc

    def _limit(self, limit: int | None) -> int:
        return self.limit if limit is None else limit

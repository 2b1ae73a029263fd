"""Feed aggregation tests driven by in-memory stores and catalog."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

import pytest

from seriesclub.errors import FetchFailure
from seriesclub.models import ActivityKind, ShowSummary, UserProfile, WatchedRecord, WatchlistRecord
from seriesclub.services.feed import FeedAggregator, FeedSessionRegistry, merge_activity
from seriesclub.services.lookups import Resolver

BASE_TIME = datetime(2024, 5, 1, 12, 0, 0)
SLOW_SHOW_ID = 500
MISSING_SHOW_ID = 999


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class FakeActivity:
    def __init__(
        self,
        watched: list[WatchedRecord],
        watchlist: list[WatchlistRecord],
        *,
        error: Exception | None = None,
    ):
        self.watched = watched
        self.watchlist = watchlist
        self.error = error
        self.limits: list[int | None] = []

    async def list_watched(self, user_id=None, *, limit=None):
        self.limits.append(limit)
        rows = [row for row in self.watched if user_id is None or row.user_id == user_id]
        return rows[:limit] if limit is not None else rows

    async def list_watchlist(self, user_id=None, *, limit=None):
        if self.error is not None:
            raise self.error
        rows = [row for row in self.watchlist if user_id is None or row.user_id == user_id]
        return rows[:limit] if limit is not None else rows


class FakeCatalog:
    async def get_show(self, show_id: int) -> ShowSummary | None:
        if show_id == SLOW_SHOW_ID:
            await asyncio.sleep(5)
        if show_id == MISSING_SHOW_ID:
            return None
        return ShowSummary(id=show_id, title=f"Title {show_id}", poster_path=f"/{show_id}.jpg")


class FakeProfiles:
    def __init__(self, known: set[str]):
        self.known = known

    async def get_profile(self, user_id: str) -> UserProfile | None:
        if user_id not in self.known:
            return None
        return UserProfile(id=user_id, display_name=user_id.upper())


def watched(record_id: int, show_id: int, hours: int, *, user_id: str = "u1", rating=None):
    return WatchedRecord(
        id=record_id,
        user_id=user_id,
        show_id=show_id,
        rating=rating,
        created_at=BASE_TIME,
        watched_at=BASE_TIME + timedelta(hours=hours),
    )


def wanted(record_id: int, show_id: int, hours: int, *, user_id: str = "u2", note=None):
    return WatchlistRecord(
        id=record_id,
        user_id=user_id,
        show_id=show_id,
        note=note,
        created_at=BASE_TIME + timedelta(hours=hours),
    )


def build_aggregator(activity, *, known=("u1", "u2"), policy="drop", timeout=1.0):
    resolver = Resolver(FakeCatalog(), FakeProfiles(set(known)), timeout=timeout)
    return FeedAggregator(activity, resolver, page_size=5, fetch_limit=50, policy=policy)


def scenario_activity() -> FakeActivity:
    watched_rows = [
        watched(1, 10, 1, rating=8.0),
        watched(2, 11, 9),
        watched(3, MISSING_SHOW_ID, 4),
        watched(4, 12, 7),
        watched(5, 13, 2),
        watched(6, 14, 12),
        watched(7, 15, 5),
    ]
    watchlist_rows = [
        wanted(1, 20, 3, note="recommended"),
        wanted(2, 21, 10),
        wanted(3, 22, 6),
    ]
    return FakeActivity(watched_rows, watchlist_rows)


async def drain(session) -> list:
    entries = []
    while True:
        page = await session.next_page()
        entries.extend(page.entries)
        if page.done:
            return entries


@pytest.mark.anyio("asyncio")
async def test_feed_drops_unresolved_rows_and_sorts_newest_first() -> None:
    aggregator = build_aggregator(scenario_activity())

    session = await aggregator.load()
    entries = await drain(session)

    assert len(entries) == 9
    timestamps = [entry.timestamp for entry in entries]
    assert timestamps == sorted(timestamps, reverse=True)
    assert len({entry.id for entry in entries}) == 9
    assert all(entry.show_id != MISSING_SHOW_ID for entry in entries)
    assert session.entries == entries
    assert session.all_processed


@pytest.mark.anyio("asyncio")
async def test_feed_pages_partition_the_snapshot() -> None:
    session = await build_aggregator(scenario_activity()).load()

    first = await session.page(1)
    second = await session.page(2)
    beyond = await session.page(3)

    assert session.total_pages == 2
    assert first.done is False
    assert len(first.entries) == 5
    assert second.done is True
    assert len(second.entries) + second.dropped == 5
    assert second.dropped == 1
    assert beyond.entries == []
    assert beyond.done is True
    assert {entry.id for entry in first.entries}.isdisjoint(
        entry.id for entry in second.entries
    )
    with pytest.raises(ValueError):
        await session.page(0)


@pytest.mark.anyio("asyncio")
async def test_next_page_after_exhaustion_does_not_duplicate_entries() -> None:
    session = await build_aggregator(scenario_activity()).load()

    entries = await drain(session)
    extra = await session.next_page()

    assert extra.entries == []
    assert extra.done is True
    assert len(session.entries) == len(entries)


@pytest.mark.anyio("asyncio")
async def test_entries_carry_user_and_show_details() -> None:
    session = await build_aggregator(scenario_activity()).load()

    page = await session.page(1)
    by_id = {entry.id: entry for entry in page.entries}

    newest = page.entries[0]
    assert newest.id == "watched:6"
    assert newest.username == "U1"
    assert newest.show_title == "Title 14"
    assert newest.poster_path == "/14.jpg"
    assert by_id["added-to-watchlist:2"].kind is ActivityKind.ADDED_TO_WATCHLIST
    assert by_id["added-to-watchlist:2"].username == "U2"


@pytest.mark.anyio("asyncio")
async def test_slow_lookup_drops_only_its_row() -> None:
    activity = FakeActivity(
        [watched(1, SLOW_SHOW_ID, 3), watched(2, 10, 2)],
        [wanted(1, 20, 1)],
    )
    session = await build_aggregator(activity, timeout=0.05).load()

    page = await session.page(1)

    assert [entry.id for entry in page.entries] == ["watched:2", "added-to-watchlist:1"]
    assert page.dropped == 1


@pytest.mark.anyio("asyncio")
async def test_placeholder_policy_keeps_unresolved_rows() -> None:
    activity = FakeActivity([watched(1, MISSING_SHOW_ID, 1, user_id="stranger")], [])
    session = await build_aggregator(activity, policy="placeholder").load()

    page = await session.page(1)

    assert len(page.entries) == 1
    assert page.entries[0].show_title == f"Show {MISSING_SHOW_ID}"
    assert page.entries[0].username == "User"
    assert page.dropped == 0


@pytest.mark.anyio("asyncio")
async def test_missing_profile_drops_row_under_drop_policy() -> None:
    activity = FakeActivity([watched(1, 10, 1, user_id="stranger")], [])
    session = await build_aggregator(activity).load()

    page = await session.page(1)

    assert page.entries == []
    assert page.dropped == 1


@pytest.mark.anyio("asyncio")
async def test_load_respects_fetch_limit() -> None:
    activity = scenario_activity()
    aggregator = build_aggregator(activity)

    session = await aggregator.load(limit=2)

    assert activity.limits == [2]
    assert len(session.rows) == 4


@pytest.mark.anyio("asyncio")
async def test_base_fetch_failure_aborts_the_feed() -> None:
    activity = FakeActivity([], [], error=FetchFailure("watchlist records"))

    with pytest.raises(FetchFailure):
        await build_aggregator(activity).load()


@pytest.mark.anyio("asyncio")
async def test_unexpected_base_error_is_wrapped() -> None:
    activity = FakeActivity([], [], error=RuntimeError("disk on fire"))

    with pytest.raises(FetchFailure) as excinfo:
        await build_aggregator(activity).load()

    assert isinstance(excinfo.value.__cause__, RuntimeError)


def test_merge_keeps_input_order_for_equal_timestamps() -> None:
    same = BASE_TIME + timedelta(hours=1)
    rows = merge_activity(
        [watched(1, 10, 1), watched(2, 11, 1)],
        [WatchlistRecord(id=1, user_id="u2", show_id=20, created_at=same)],
    )

    assert [row.key for row in rows] == ["watched:1", "watched:2", "added-to-watchlist:1"]


def test_watched_at_overrides_created_at_for_ordering() -> None:
    early = WatchedRecord(
        id=1, user_id="u1", show_id=1, created_at=BASE_TIME + timedelta(days=3),
        watched_at=BASE_TIME,
    )
    late = WatchedRecord(id=2, user_id="u1", show_id=2, created_at=BASE_TIME + timedelta(days=1))

    rows = merge_activity([early, late], [])

    assert [row.record.id for row in rows] == [2, 1]


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.anyio("asyncio")
async def test_registry_expires_and_invalidates_sessions() -> None:
    clock = FakeClock()
    registry = FeedSessionRegistry(60, clock=clock)
    aggregator = build_aggregator(scenario_activity())

    first = await aggregator.load()
    feed_id = registry.add(first)
    assert first.feed_id == feed_id
    assert registry.get(feed_id) is first

    clock.now = 61
    with pytest.raises(KeyError):
        registry.get(feed_id)

    second_id = registry.add(await aggregator.load())
    registry.invalidate("watched")
    assert len(registry) == 0
    with pytest.raises(KeyError):
        registry.get(second_id)


class BlockingCatalog:
    """Catalog whose lookups hang until cancelled."""

    def __init__(self) -> None:
        self.started = asyncio.Event()
        self.cancelled = False

    async def get_show(self, show_id: int) -> ShowSummary | None:
        self.started.set()
        try:
            await asyncio.sleep(30)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return None


@pytest.mark.anyio("asyncio")
async def test_cancelling_a_page_cancels_pending_lookups() -> None:
    catalog = BlockingCatalog()
    resolver = Resolver(catalog, FakeProfiles({"u1"}), timeout=60)
    aggregator = FeedAggregator(FakeActivity([watched(1, 10, 1)], []), resolver)
    session = await aggregator.load()

    task = asyncio.create_task(session.page(1))
    await catalog.started.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert catalog.cancelled


@pytest.mark.anyio("asyncio")
async def test_registry_ignores_changes_outside_feed_tables() -> None:
    registry = FeedSessionRegistry(60)
    feed_id = registry.add(await build_aggregator(scenario_activity()).load())

    registry.invalidate("status")
    assert registry.get(feed_id).feed_id == feed_id

    registry.invalidate("watchlist")
    assert len(registry) == 0


@pytest.mark.anyio("asyncio")
async def test_registry_evicts_oldest_snapshot_past_cap() -> None:
    registry = FeedSessionRegistry(60, max_sessions=2)
    aggregator = build_aggregator(scenario_activity())

    first = registry.add(await aggregator.load())
    second = registry.add(await aggregator.load())
    third = registry.add(await aggregator.load())

    assert len(registry) == 2
    with pytest.raises(KeyError):
        registry.get(first)
    assert registry.get(second).feed_id == second
    assert registry.get(third).feed_id == third

"""Persistence helpers for watched shows, watchlists and show statuses."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, TypeVar

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import ShowStatusEntry, WatchedShow, WatchlistItem
from ..errors import FetchFailure, WriteFailure
from ..models import (
    SHOW_STATUSES,
    ShowStatusRecord,
    WatchedRecord,
    WatchlistRecord,
)
from ..utils import normalise_rating, parse_show_id, to_naive_utc, utcnow
from .profiles import ensure_profile_row

logger = logging.getLogger(__name__)

ChangeListener = Callable[[str], None]
_Row = TypeVar("_Row", WatchedShow, WatchlistItem, ShowStatusEntry)


class ChangeNotifier:
    """Fan out a payload-free "rows changed" signal to subscribers."""

    def __init__(self) -> None:
        self._listeners: list[ChangeListener] = []

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register ``listener`` and return a callable that unsubscribes it."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def notify(self, table: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(table)
            except Exception:  # pragma: no cover - listener bugs must not break writes
                logger.exception("Change listener %r failed for %s", listener, table)


class ActivityStore:
    """CRUD access to the activity tables, keyed on ``(user_id, show_id)``."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: ChangeNotifier | None = None,
    ):
        self._session_factory = session_factory
        self.notifier = notifier or ChangeNotifier()

    async def list_watched(
        self, user_id: str | None = None, *, limit: int | None = None
    ) -> list[WatchedRecord]:
        """Return watched records, newest first, optionally for a single user."""

        stmt = select(WatchedShow).order_by(
            func.coalesce(WatchedShow.watched_at, WatchedShow.created_at).desc(),
            WatchedShow.id.desc(),
        )
        if user_id is not None:
            stmt = stmt.where(WatchedShow.user_id == user_id)
        if limit is not None:
            stmt = stmt.limit(limit)
        rows = await self._fetch_rows(stmt, "watched records")
        return [WatchedRecord.model_validate(row) for row in rows]

    async def list_watchlist(
        self, user_id: str | None = None, *, limit: int | None = None
    ) -> list[WatchlistRecord]:
        """Return watchlist records, newest first, optionally for a single user."""

        stmt = select(WatchlistItem).order_by(
            WatchlistItem.created_at.desc(), WatchlistItem.id.desc()
        )
        if user_id is not None:
            stmt = stmt.where(WatchlistItem.user_id == user_id)
        if limit is not None:
            stmt = stmt.limit(limit)
        rows = await self._fetch_rows(stmt, "watchlist records")
        return [WatchlistRecord.model_validate(row) for row in rows]

    async def upsert_watched(
        self,
        user_id: str,
        show_id: int,
        *,
        rating: float | None = None,
        comment: str | None = None,
        watched_at: datetime | None = None,
    ) -> WatchedRecord:
        """Mark a show as watched, updating the existing record for the pair."""

        values: dict[str, Any] = {
            "rating": normalise_rating(rating),
            "comment": (comment or "").strip() or None,
        }
        if watched_at is not None:
            values["watched_at"] = to_naive_utc(watched_at)
        row = await self._upsert(
            WatchedShow,
            user_id,
            parse_show_id(show_id),
            values,
            insert_defaults={"watched_at": utcnow()},
        )
        self.notifier.notify("watched")
        return WatchedRecord.model_validate(row)

    async def upsert_watchlist(
        self, user_id: str, show_id: int, *, note: str | None = None
    ) -> WatchlistRecord:
        """Add a show to the watchlist, updating the note of an existing entry."""

        row = await self._upsert(
            WatchlistItem,
            user_id,
            parse_show_id(show_id),
            {"note": (note or "").strip() or None},
        )
        self.notifier.notify("watchlist")
        return WatchlistRecord.model_validate(row)

    async def delete_watched(self, record_id: int) -> bool:
        deleted = await self._delete(WatchedShow, record_id)
        if deleted:
            self.notifier.notify("watched")
        return deleted

    async def delete_watchlist(self, record_id: int) -> bool:
        deleted = await self._delete(WatchlistItem, record_id)
        if deleted:
            self.notifier.notify("watchlist")
        return deleted

    async def get_status(self, user_id: str, show_id: int) -> ShowStatusRecord | None:
        stmt = select(ShowStatusEntry).where(
            ShowStatusEntry.user_id == user_id,
            ShowStatusEntry.show_id == parse_show_id(show_id),
        )
        rows = await self._fetch_rows(stmt, "show status")
        if not rows:
            return None
        return ShowStatusRecord.model_validate(rows[0])

    async def set_status(self, user_id: str, show_id: int, status: str) -> ShowStatusRecord:
        normalized = (status or "").strip().lower()
        if normalized not in SHOW_STATUSES:
            raise ValueError(
                f"Unknown show status {status!r}; expected one of {', '.join(SHOW_STATUSES)}"
            )
        row = await self._upsert(
            ShowStatusEntry, user_id, parse_show_id(show_id), {"status": normalized}
        )
        self.notifier.notify("status")
        return ShowStatusRecord.model_validate(row)

    async def remove_status(self, user_id: str, show_id: int) -> bool:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(ShowStatusEntry).where(
                        ShowStatusEntry.user_id == user_id,
                        ShowStatusEntry.show_id == parse_show_id(show_id),
                    )
                )
                row = result.scalar_one_or_none()
                if row is None:
                    return False
                await session.delete(row)
                await session.commit()
        except SQLAlchemyError as exc:
            logger.exception("Removing status for %s/%s failed", user_id, show_id)
            raise WriteFailure("show status") from exc
        self.notifier.notify("status")
        return True

    async def list_by_status(self, user_id: str, status: str) -> list[int]:
        normalized = (status or "").strip().lower()
        if normalized not in SHOW_STATUSES:
            raise ValueError(f"Unknown show status {status!r}")
        stmt = (
            select(ShowStatusEntry)
            .where(
                ShowStatusEntry.user_id == user_id,
                ShowStatusEntry.status == normalized,
            )
            .order_by(ShowStatusEntry.updated_at.desc())
        )
        rows = await self._fetch_rows(stmt, "show statuses")
        return [row.show_id for row in rows]

    async def _fetch_rows(self, stmt, source: str) -> list[Any]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as exc:
            logger.exception("Fetching %s failed", source)
            raise FetchFailure(source) from exc

    async def _upsert(
        self,
        model: type[_Row],
        user_id: str,
        show_id: int,
        values: dict[str, Any],
        *,
        insert_defaults: dict[str, Any] | None = None,
    ) -> _Row:
        """Update the row for ``(user_id, show_id)`` or insert it when absent.

        The check and the write are not atomic. When a concurrent insert wins the
        unique constraint the write is retried once as an update.
        """

        table = model.__tablename__
        for attempt in (1, 2):
            try:
                async with self._session_factory() as session:
                    await ensure_profile_row(session, user_id)
                    result = await session.execute(
                        select(model).where(
                            model.user_id == user_id, model.show_id == show_id
                        )
                    )
                    row = result.scalar_one_or_none()
                    if row is None:
                        row = model(
                            user_id=user_id,
                            show_id=show_id,
                            **{**(insert_defaults or {}), **values},
                        )
                        session.add(row)
                    else:
                        for key, value in values.items():
                            setattr(row, key, value)
                        row.updated_at = utcnow()
                    await session.commit()
                    await session.refresh(row)
                    return row
            except IntegrityError as exc:
                if attempt == 2:
                    logger.exception("Upsert into %s failed for %s/%s", table, user_id, show_id)
                    raise WriteFailure(table) from exc
                logger.info(
                    "Concurrent insert into %s for %s/%s, retrying as update",
                    table,
                    user_id,
                    show_id,
                )
            except SQLAlchemyError as exc:
                logger.exception("Upsert into %s failed for %s/%s", table, user_id, show_id)
                raise WriteFailure(table) from exc
        raise WriteFailure(table)  # pragma: no cover - loop always returns or raises

    async def _delete(self, model: type[_Row], record_id: int) -> bool:
        try:
            async with self._session_factory() as session:
                row = await session.get(model, record_id)
                if row is None:
                    return False
                await session.delete(row)
                await session.commit()
        except SQLAlchemyError as exc:
            logger.exception("Deleting %s %s failed", model.__tablename__, record_id)
            raise WriteFailure(model.__tablename__) from exc
        return True

"""Pydantic models describing stored records and derived feed/ranking payloads."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import AliasGenerator, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .utils import avatar_placeholder, build_image_url, display_rating, parse_show_id

ShowStatus = Literal["watching", "watched", "watchlist"]
SHOW_STATUSES: tuple[str, ...] = ("watching", "watched", "watchlist")


class PayloadModel(BaseModel):
    """Base model serialising to the camelCase payloads returned by the API."""

    model_config = ConfigDict(
        alias_generator=AliasGenerator(serialization_alias=to_camel),
        from_attributes=True,
    )

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class Genre(PayloadModel):
    id: int
    name: str


class ShowSummary(PayloadModel):
    """Catalog metadata for a single TV show."""

    id: int
    title: str
    overview: str | None = None
    poster_path: str | None = None
    backdrop_path: str | None = None
    first_air_date: str | None = None
    genres: list[Genre] = Field(default_factory=list)
    vote_average: float = 0.0

    @classmethod
    def from_tmdb_payload(cls, data: dict[str, Any]) -> "ShowSummary":
        """Build a summary from a TMDB ``/tv/{id}`` or ``/search/tv`` result."""

        genres: list[Genre] = []
        for entry in data.get("genres") or []:
            if isinstance(entry, dict) and entry.get("id") is not None:
                genres.append(Genre(id=int(entry["id"]), name=str(entry.get("name") or "")))
        title = data.get("name") or data.get("original_name") or data.get("title")
        return cls(
            id=parse_show_id(data["id"]),
            title=str(title or f"Show {data['id']}"),
            overview=data.get("overview") or None,
            poster_path=data.get("poster_path"),
            backdrop_path=data.get("backdrop_path"),
            first_air_date=data.get("first_air_date") or None,
            genres=genres,
            vote_average=float(data.get("vote_average") or 0.0),
        )

    @classmethod
    def placeholder(cls, show_id: int) -> "ShowSummary":
        return cls(id=show_id, title=f"Show {show_id}")

    def poster_url(self, size: str = "w500") -> str | None:
        return build_image_url(self.poster_path, size)


class UserProfile(PayloadModel):
    """Public profile details used when rendering activity."""

    id: str
    display_name: str | None = None
    avatar_url: str | None = None
    created_at: datetime | None = None

    @property
    def username(self) -> str:
        name = (self.display_name or "").strip()
        return name or "User"

    @property
    def avatar(self) -> str:
        return self.avatar_url or avatar_placeholder(self.display_name or self.id)


class ProfileUpdate(BaseModel):
    """Partial profile update; unset fields are left untouched."""

    display_name: str | None = Field(default=None, max_length=120)
    avatar_url: str | None = Field(default=None, max_length=512)

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    @field_validator("display_name", "avatar_url", mode="before")
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return value


class WatchedRecord(PayloadModel):
    id: int
    user_id: str
    show_id: int
    rating: float | None = None
    comment: str | None = None
    watched_at: datetime | None = None
    created_at: datetime

    @property
    def effective_timestamp(self) -> datetime:
        return self.watched_at or self.created_at


class WatchlistRecord(PayloadModel):
    id: int
    user_id: str
    show_id: int
    note: str | None = None
    created_at: datetime

    @property
    def effective_timestamp(self) -> datetime:
        return self.created_at


class ShowStatusRecord(PayloadModel):
    id: int
    user_id: str
    show_id: int
    status: ShowStatus
    created_at: datetime
    updated_at: datetime


class ActivityKind(str, Enum):
    WATCHED = "watched"
    ADDED_TO_WATCHLIST = "added-to-watchlist"


class ActivityEntry(PayloadModel):
    """A resolved feed row combining a record with its user and show."""

    id: str
    record_id: int
    user_id: str
    show_id: int
    kind: ActivityKind
    timestamp: datetime
    username: str
    show_title: str
    user_avatar_url: str | None = None
    poster_path: str | None = None
    rating: float | None = None
    comment: str | None = None
    note: str | None = None


class FeedPage(PayloadModel):
    feed_id: str | None = None
    page: int
    page_size: int
    entries: list[ActivityEntry] = Field(default_factory=list)
    dropped: int = 0
    done: bool = False
    total_rows: int = 0


class Watcher(PayloadModel):
    user_id: str
    username: str
    avatar_url: str | None = None
    rating: float | None = None


class ShowAggregate(PayloadModel):
    """Per-show rollup of watched records."""

    show_id: int
    title: str
    poster_path: str | None = None
    first_air_date: str | None = None
    watch_count: int = 0
    ratings: list[float] = Field(default_factory=list)
    average_rating: float = 0.0
    watchers: list[Watcher] = Field(default_factory=list)
    resolved: bool = True

    @property
    def display_rating(self) -> float:
        return display_rating(self.average_rating)

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["displayRating"] = self.display_rating
        return payload


class ShowInterestAggregate(PayloadModel):
    """Per-show rollup of watchlist records."""

    show_id: int
    title: str
    poster_path: str | None = None
    want_count: int = 0
    users: list[str] = Field(default_factory=list)
    resolved: bool = True


class InterestEntry(PayloadModel):
    id: int
    show: ShowSummary
    user_id: str
    username: str
    user_avatar_url: str | None = None
    note: str | None = None
    added_at: datetime


class UserAggregate(PayloadModel):
    """Per-user rollup of watched records."""

    user_id: str
    username: str
    avatar_url: str | None = None
    watched_count: int = 0
    average_rating: float = 0.0
    position: int = 0

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["displayRating"] = display_rating(self.average_rating)
        return payload


class UserLeaderboard(PayloadModel):
    entries: list[UserAggregate] = Field(default_factory=list)
    current_user_position: int | None = None

    @property
    def podium(self) -> list[UserAggregate]:
        return self.entries[:3]

    def to_payload(self) -> dict[str, Any]:
        return {
            "entries": [entry.to_payload() for entry in self.entries],
            "podium": [entry.to_payload() for entry in self.podium],
            "currentUserPosition": self.current_user_position,
        }

"""Utility helpers for the SeriesClub service."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Iterable
from urllib.parse import quote

IMAGE_BASE_URL = "https://image.tmdb.org/t/p"
AVATAR_PLACEHOLDER_URL = "https://api.dicebear.com/7.x/initials/svg?seed={seed}"

MIN_RATING = 0.0
MAX_RATING = 10.0


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime, matching stored columns."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an offset-aware datetime to naive UTC; naive values are taken as UTC."""

    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def normalise_rating(value: float | int | str | None) -> float | None:
    """Validate a 0-10 rating and snap it to one decimal place."""

    if value is None or value == "":
        return None
    try:
        rating = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError("Rating must be a number") from exc
    if rating != rating or not MIN_RATING <= rating <= MAX_RATING:
        raise ValueError("Rating must be between 0 and 10")
    return round(rating, 1)


def mean_rating(ratings: Iterable[float | None]) -> float:
    """Return the arithmetic mean of the non-null ratings, or 0 when there are none."""

    values = [rating for rating in ratings if rating is not None]
    if not values:
        return 0.0
    return sum(values) / len(values)


def display_rating(value: float) -> float:
    return round(value, 1)


def parse_show_id(value: object) -> int:
    """Coerce catalog identifiers, which older rows stored as strings."""

    if isinstance(value, bool):
        raise ValueError("Show id must be an integer")
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid show id: {value!r}") from exc


def parse_air_date(value: str | None) -> date | None:
    """Parse a catalog ``YYYY-MM-DD`` air date, tolerating blanks and junk."""

    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def build_image_url(path: str | None, size: str = "w500") -> str | None:
    """Return the full TMDB image URL for a poster or backdrop path."""

    if not path:
        return None
    if path.startswith("http"):
        return path
    if not path.startswith("/"):
        path = f"/{path}"
    return f"{IMAGE_BASE_URL}/{size}{path}"


def avatar_placeholder(seed: str) -> str:
    return AVATAR_PLACEHOLDER_URL.format(seed=quote(seed or "user", safe=""))

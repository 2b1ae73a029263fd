from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from seriesclub.utils import (
    avatar_placeholder,
    build_image_url,
    mean_rating,
    normalise_rating,
    parse_air_date,
    parse_show_id,
    to_naive_utc,
)


def test_normalise_rating_rounds_to_one_decimal():
    assert normalise_rating(7.26) == 7.3
    assert normalise_rating("8") == 8.0


def test_normalise_rating_keeps_zero_and_none_distinct():
    assert normalise_rating(0) == 0.0
    assert normalise_rating(None) is None
    assert normalise_rating("") is None


@pytest.mark.parametrize("value", [-0.5, 10.5, "abc", float("nan")])
def test_normalise_rating_rejects_out_of_range(value):
    with pytest.raises(ValueError):
        normalise_rating(value)


def test_mean_rating_skips_unrated_records():
    assert mean_rating([8.0, None, 6.0]) == 7.0
    assert mean_rating([None, None]) == 0.0
    assert mean_rating([]) == 0.0


def test_mean_rating_counts_zero_ratings():
    assert mean_rating([0.0, 10.0]) == 5.0


def test_parse_show_id_accepts_legacy_strings():
    assert parse_show_id("1396") == 1396
    assert parse_show_id(42) == 42
    with pytest.raises(ValueError):
        parse_show_id("not-a-number")
    with pytest.raises(ValueError):
        parse_show_id(True)


def test_parse_air_date_tolerates_blanks():
    assert parse_air_date("2019-03-01") == date(2019, 3, 1)
    assert parse_air_date("") is None
    assert parse_air_date("unknown") is None


def test_build_image_url():
    assert build_image_url("/abc.jpg") == "https://image.tmdb.org/t/p/w500/abc.jpg"
    assert build_image_url("abc.jpg", "w185") == "https://image.tmdb.org/t/p/w185/abc.jpg"
    assert build_image_url(None) is None


def test_avatar_placeholder_escapes_seed():
    assert avatar_placeholder("Ana B").endswith("seed=Ana%20B")


def test_to_naive_utc_converts_offsets():
    aware = datetime(2024, 5, 1, 12, 0, tzinfo=timezone(timedelta(hours=5)))
    naive = datetime(2024, 5, 1, 10, 0)

    assert to_naive_utc(aware) == datetime(2024, 5, 1, 7, 0)
    assert to_naive_utc(naive) is naive

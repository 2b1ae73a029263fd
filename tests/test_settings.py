"""Configuration settings behaviour tests."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from seriesclub.config import Settings


def test_defaults_match_feed_and_ranking_behaviour() -> None:
    settings = Settings(_env_file=None)

    assert settings.feed_page_size == 5
    assert settings.feed_fetch_limit == 50
    assert settings.feed_max_sessions == 256
    assert settings.feed_unresolved_policy == "drop"
    assert settings.ranking_unresolved_policy == "placeholder"
    assert settings.interest_unresolved_policy == "drop"
    assert settings.tmdb_api_key is None


def test_policies_are_parsed_case_insensitively() -> None:
    settings = Settings(
        _env_file=None,
        FEED_UNRESOLVED_POLICY=" Placeholder ",
        RANKING_UNRESOLVED_POLICY="DROP",
    )

    assert settings.feed_unresolved_policy == "placeholder"
    assert settings.ranking_unresolved_policy == "drop"


def test_unknown_policy_is_rejected() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, FEED_UNRESOLVED_POLICY="ignore")


def test_blank_tmdb_key_is_treated_as_missing() -> None:
    settings = Settings(_env_file=None, TMDB_API_KEY="   ")

    assert settings.tmdb_api_key is None


def test_page_size_must_be_positive() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, FEED_PAGE_SIZE=0)

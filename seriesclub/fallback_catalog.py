"""Built-in show dataset served when the remote catalog cannot be reached."""

from __future__ import annotations

from .models import Genre, ShowSummary

DRAMA = Genre(id=18, name="Drama")
SCI_FI_FANTASY = Genre(id=10765, name="Sci-Fi & Fantasy")
COMEDY = Genre(id=35, name="Comedy")
CRIME = Genre(id=80, name="Crime")


FALLBACK_SHOWS: tuple[ShowSummary, ...] = (
    ShowSummary(
        id=1396,
        title="Breaking Bad",
        overview=(
            "A high school chemistry teacher diagnosed with terminal cancer teams up "
            "with a former student to cook and sell methamphetamine."
        ),
        poster_path="/ggFHVNu6YYI5L9pCfOacjizRGt.jpg",
        backdrop_path="/tsRy63Mu5cu8etL1X7ZLyf7UP1M.jpg",
        first_air_date="2008-01-20",
        genres=[DRAMA],
        vote_average=8.5,
    ),
    ShowSummary(
        id=1399,
        title="Game of Thrones",
        overview=(
            "Seven noble families fight for control of the mythical land of Westeros."
        ),
        poster_path="/u3bZgnGQ9T01sWNhyveQz0wH0Hl.jpg",
        backdrop_path="/suopoADq0k8YZr4dQXcU6pToj6s.jpg",
        first_air_date="2011-04-17",
        genres=[SCI_FI_FANTASY, DRAMA],
        vote_average=8.3,
    ),
    ShowSummary(
        id=66732,
        title="Stranger Things",
        overview=(
            "When a young boy vanishes, a small town uncovers a mystery involving "
            "secret experiments, supernatural forces and one strange little girl."
        ),
        poster_path="/49WJfeN0moxb9IPfGn8AIqMGskD.jpg",
        backdrop_path="/56v2KjBlU4XaOv9rVYEQypROD7P.jpg",
        first_air_date="2016-07-15",
        genres=[DRAMA, SCI_FI_FANTASY],
        vote_average=8.6,
    ),
    ShowSummary(
        id=1668,
        title="Friends",
        overview=(
            "Six friends navigate life and love in New York City, usually from the "
            "couch at Central Perk."
        ),
        poster_path="/f496cm9enuEsZkSPzCwnTESEK5s.jpg",
        backdrop_path="/l0qVZIpXtIo7km9u5Yqh0nKPOr5.jpg",
        first_air_date="1994-09-22",
        genres=[COMEDY],
        vote_average=8.4,
    ),
    ShowSummary(
        id=71446,
        title="Money Heist",
        overview=(
            "Eight thieves take hostages and lock themselves in the Royal Mint of "
            "Spain to pull off the biggest heist in history."
        ),
        poster_path="/yVUAfmxbB8gCGhq2NUohXPLvNs6.jpg",
        backdrop_path="/piuRhGiQBMWbQ5LK9sxsITZkm9E.jpg",
        first_air_date="2017-05-02",
        genres=[CRIME, DRAMA],
        vote_average=8.3,
    ),
)

FALLBACK_SHOW_MAP: dict[int, ShowSummary] = {show.id: show for show in FALLBACK_SHOWS}


def find_fallback_show(show_id: int) -> ShowSummary | None:
    return FALLBACK_SHOW_MAP.get(show_id)


def search_fallback_shows(query: str) -> list[ShowSummary]:
    """Case-insensitive substring match over the built-in titles."""

    needle = query.strip().casefold()
    if not needle:
        return []
    return [show for show in FALLBACK_SHOWS if needle in show.title.casefold()]

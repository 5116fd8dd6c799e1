"""Content and popularity scorers. Pure functions, no I/O."""

import math
from typing import Iterable

from hybridrec.core.contracts import (
    MAX_RATING,
    MIN_RATING,
    ItemFeatures,
    PreferenceProfile,
    RuntimeWindow,
    YearWindow,
)

# Content feature weights
GENRE_WEIGHT = 0.4
DIRECTOR_WEIGHT = 0.2
ACTOR_WEIGHT = 0.2
RUNTIME_WEIGHT = 0.1
YEAR_WEIGHT = 0.1

NEUTRAL_SCORE = 0.5
OUTSIDE_RUNTIME_SCORE = 0.2
OUTSIDE_YEAR_SCORE = 0.3
TOP_BILLED_ACTORS = 3

VOTE_COUNT_LOG_BASE = 10000


def clamp01(value: float) -> float:
    if math.isnan(value):
        return 0.0
    return max(0.0, min(1.0, value))


def normalize_rating(raw: float) -> float:
    """Map a raw 1-10 rating prediction onto [0, 1].

    normalize_rating(1) == 0, normalize_rating(10) == 1, out-of-range
    values are clamped.
    """
    return clamp01((raw - MIN_RATING) / (MAX_RATING - MIN_RATING))


def genre_score(item: ItemFeatures, preferences: dict[str, float]) -> float:
    if not preferences:
        return NEUTRAL_SCORE
    if not item.genres:
        return 0.0
    return sum(preferences.get(g, 0.0) for g in item.genres) / len(item.genres)


def director_score(item: ItemFeatures, preferences: dict[str, float]) -> float:
    if not preferences:
        return NEUTRAL_SCORE
    return max((preferences.get(d, 0.0) for d in item.directors), default=0.0)


def actor_score(item: ItemFeatures, preferences: dict[str, float]) -> float:
    if not preferences:
        return NEUTRAL_SCORE
    top = item.cast[:TOP_BILLED_ACTORS]
    if not top:
        return 0.0
    return sum(preferences.get(a, 0.0) for a in top) / len(top)


def runtime_score(runtime: int | None, window: RuntimeWindow) -> float:
    """Triangular score: 1 at the ideal runtime, 0 at the window edge.

    Outside the window scores 0.2; an unknown runtime is neutral.
    """
    if runtime is None:
        return NEUTRAL_SCORE
    if runtime < window.min or runtime > window.max:
        return OUTSIDE_RUNTIME_SCORE

    max_distance = max(window.ideal - window.min, window.max - window.ideal)
    if max_distance <= 0:
        return 1.0
    return clamp01(1.0 - abs(runtime - window.ideal) / max_distance)


def year_score(year: int | None, window: YearWindow) -> float:
    if year is None:
        return NEUTRAL_SCORE
    if year < window.min or year > window.max:
        return OUTSIDE_YEAR_SCORE
    return 1.0


def content_score(profile: PreferenceProfile, item: ItemFeatures) -> float:
    """Weighted content similarity between a profile and an item, in [0, 1]."""
    score = (
        GENRE_WEIGHT * genre_score(item, profile.genre_preferences)
        + DIRECTOR_WEIGHT * director_score(item, profile.director_preferences)
        + ACTOR_WEIGHT * actor_score(item, profile.actor_preferences)
        + RUNTIME_WEIGHT * runtime_score(item.runtime, profile.runtime_window)
        + YEAR_WEIGHT * year_score(item.year, profile.year_window)
    )
    return clamp01(score)


def popularity_score(item: ItemFeatures) -> float:
    """Popularity baseline from catalog popularity, votes and vote count."""
    popularity = clamp01(item.popularity / 100.0)
    rating = clamp01(item.vote_average / 10.0)
    volume = clamp01(math.log(max(item.vote_count, 0) + 1) / math.log(VOTE_COUNT_LOG_BASE))
    return clamp01(0.4 * popularity + 0.4 * rating + 0.2 * volume)


def score_content(
    profile: PreferenceProfile,
    candidates: Iterable[ItemFeatures],
) -> dict[str, float]:
    """Content scores keyed by item ID."""
    return {item.item_id: content_score(profile, item) for item in candidates}


def score_popularity(candidates: Iterable[ItemFeatures]) -> dict[str, float]:
    """Popularity scores keyed by item ID."""
    return {item.item_id: popularity_score(item) for item in candidates}

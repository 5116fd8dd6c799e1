"""User preference profile derived from the interaction history."""

from datetime import datetime, timedelta, timezone
from statistics import mean
from typing import Iterable, Mapping, Sequence

from hybridrec.core.contracts import (
    ActionKind,
    InteractionEvent,
    ItemFeatures,
    PreferenceProfile,
    RuntimeWindow,
    YearWindow,
)

SESSION_TIMEOUT = timedelta(minutes=30)
RECENCY_HALF_LIFE_DAYS = 90.0

LIKED_RATING = 7.0
MIN_LIKED_FOR_WINDOWS = 3
TOP_BILLED_ACTORS = 3

# Genre signal source weights
RATE_SIGNAL_WEIGHT = 0.6
WATCH_SIGNAL_WEIGHT = 0.3
WATCHLIST_SIGNAL_WEIGHT = 0.1

MIN_WATCH_SECONDS = 300.0
FULL_WATCH_SECONDS = 3600.0


def group_sessions(
    events: Sequence[InteractionEvent],
    timeout: timedelta = SESSION_TIMEOUT,
) -> list[list[InteractionEvent]]:
    """Split chronologically ordered events into sessions.

    Consecutive events whose gap is at most ``timeout`` share a session.

    Args:
        events: Events in chronological order
        timeout: Maximum gap inside one session

    Returns:
        List of sessions, each a non-empty list of events
    """
    sessions: list[list[InteractionEvent]] = []
    current: list[InteractionEvent] = []

    for event in events:
        if current and event.timestamp - current[-1].timestamp > timeout:
            sessions.append(current)
            current = []
        current.append(event)

    if current:
        sessions.append(current)

    return sessions


def rating_variance(values: Sequence[float]) -> float:
    """Population variance of ratings; 0 for fewer than two values."""
    if len(values) < 2:
        return 0.0
    avg = sum(values) / len(values)
    return sum((v - avg) ** 2 for v in values) / len(values)


def recency_decay(
    timestamp: datetime,
    now: datetime,
    half_life_days: float = RECENCY_HALF_LIFE_DAYS,
) -> float:
    """Exponential decay factor in (0, 1]; future timestamps count as now."""
    age_days = max((now - timestamp).total_seconds() / 86400.0, 0.0)
    return 0.5 ** (age_days / half_life_days)


def _normalize_by_max(scores: dict[str, float]) -> dict[str, float]:
    top = max(scores.values(), default=0.0)
    if top <= 0:
        return {}
    return {name: score / top for name, score in scores.items()}


def _genre_preferences(
    events: Iterable[InteractionEvent],
    features: Mapping[str, ItemFeatures],
    now: datetime,
) -> dict[str, float]:
    totals: dict[str, float] = {}
    weights: dict[str, float] = {}

    for event in events:
        if event.action == ActionKind.RATE:
            signal, source_weight = event.value / 10.0, RATE_SIGNAL_WEIGHT
        elif event.action == ActionKind.WATCH_TIME and event.value > MIN_WATCH_SECONDS:
            signal = min(event.value / FULL_WATCH_SECONDS, 1.0)
            source_weight = WATCH_SIGNAL_WEIGHT
        elif event.action == ActionKind.ADD_WATCHLIST:
            signal, source_weight = 1.0, WATCHLIST_SIGNAL_WEIGHT
        else:
            continue

        item = features.get(event.item_id)
        if item is None:
            continue

        weight = source_weight * recency_decay(event.timestamp, now)
        for genre in item.genres:
            totals[genre] = totals.get(genre, 0.0) + signal * weight
            weights[genre] = weights.get(genre, 0.0) + weight

    return {
        genre: min(max(totals[genre] / weights[genre], 0.0), 1.0)
        for genre in totals
        if weights[genre] > 0
    }


def _people_preferences(
    liked: Sequence[InteractionEvent],
    features: Mapping[str, ItemFeatures],
    now: datetime,
) -> tuple[dict[str, float], dict[str, float]]:
    directors: dict[str, float] = {}
    actors: dict[str, float] = {}

    for event in liked:
        item = features.get(event.item_id)
        if item is None:
            continue

        base = event.value / 10.0 * recency_decay(event.timestamp, now)
        for director in item.directors:
            directors[director] = directors.get(director, 0.0) + base
        for idx, actor in enumerate(item.cast[:TOP_BILLED_ACTORS]):
            billing = 1.0 - idx * 0.1
            actors[actor] = actors.get(actor, 0.0) + base * billing

    return _normalize_by_max(directors), _normalize_by_max(actors)


def _windows(
    liked_items: Sequence[ItemFeatures],
    now: datetime,
) -> tuple[RuntimeWindow, YearWindow]:
    runtime_window = RuntimeWindow()
    year_window = YearWindow(min=1990, max=now.year)

    runtimes = [float(item.runtime) for item in liked_items if item.runtime]
    if len(runtimes) >= MIN_LIKED_FOR_WINDOWS:
        runtime_window = RuntimeWindow(min=min(runtimes), max=max(runtimes), ideal=mean(runtimes))

    years = [item.year for item in liked_items if item.year]
    if len(years) >= MIN_LIKED_FOR_WINDOWS:
        year_window = YearWindow(min=min(years), max=max(years))

    return runtime_window, year_window


def build_profile(
    user_id: str,
    events: Sequence[InteractionEvent],
    features: Mapping[str, ItemFeatures],
    now: datetime | None = None,
) -> PreferenceProfile:
    """Build a preference profile from a user's interaction history.

    Args:
        user_id: User ID
        events: Interaction events in chronological order
        features: Item features for items referenced by the events
        now: Reference time for recency decay

    Returns:
        PreferenceProfile; rating_count counts distinct rated items and
        is 0 when there are no ratings
    """
    now = now or datetime.now(timezone.utc)
    profile = PreferenceProfile(user_id=user_id)
    profile.year_window = YearWindow(min=1990, max=now.year)

    if not events:
        return profile

    # re-ratings replace the earlier rating of the same item
    latest: dict[str, InteractionEvent] = {}
    for e in events:
        if e.action == ActionKind.RATE:
            latest.pop(e.item_id, None)
            latest[e.item_id] = e
    ratings = list(latest.values())
    values = [e.value for e in ratings]
    profile.rating_count = len(ratings)
    if ratings:
        profile.average_rating = sum(values) / len(values)
    profile.rating_variance = rating_variance(values)
    profile.rated_item_ids = set(latest)

    first, last = events[0].timestamp, events[-1].timestamp
    profile.time_active_days = max((last - first).total_seconds() / 86400.0, 0.0)
    profile.last_active = last

    sessions = group_sessions(events)
    profile.session_count = len(sessions)
    profile.engagement_score = len(events) / len(sessions) if sessions else 0.0

    signals = [e for e in events if e.action != ActionKind.RATE] + ratings
    profile.genre_preferences = _genre_preferences(signals, features, now)

    liked = [e for e in ratings if e.value >= LIKED_RATING]
    profile.director_preferences, profile.actor_preferences = _people_preferences(
        liked, features, now
    )

    liked_items = []
    seen: set[str] = set()
    for event in liked:
        item = features.get(event.item_id)
        if item is not None and item.item_id not in seen:
            seen.add(item.item_id)
            liked_items.append(item)
    profile.runtime_window, profile.year_window = _windows(liked_items, now)

    return profile

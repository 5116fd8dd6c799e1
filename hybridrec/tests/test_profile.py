"""Tests for the preference profile builder."""

from datetime import datetime, timedelta, timezone

import pytest

from hybridrec.core.contracts import ActionKind, InteractionEvent, ItemFeatures
from hybridrec.core.profile import build_profile, group_sessions, rating_variance, recency_decay

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _event(item_id, action=ActionKind.RATE, value=8.0, at=NOW):
    return InteractionEvent(
        user_id="u1",
        item_id=item_id,
        action=action,
        value=value,
        timestamp=at,
    )


# ---------------------------------------------------------------------------
# Sessions and variance
# ---------------------------------------------------------------------------

def test_group_sessions_splits_on_gap():
    events = [
        _event("a", at=NOW),
        _event("b", at=NOW + timedelta(minutes=15)),
        _event("c", at=NOW + timedelta(minutes=60)),
    ]
    sessions = group_sessions(events)
    assert [len(s) for s in sessions] == [2, 1]


def test_group_sessions_exact_timeout_stays_together():
    events = [_event("a", at=NOW), _event("b", at=NOW + timedelta(minutes=30))]
    assert [len(s) for s in group_sessions(events)] == [2]


def test_group_sessions_empty():
    assert group_sessions([]) == []


def test_rating_variance():
    assert rating_variance([5, 7, 3]) == pytest.approx(2.6667, abs=1e-3)
    assert rating_variance([7]) == 0.0
    assert rating_variance([]) == 0.0


def test_recency_decay_half_life():
    assert recency_decay(NOW, NOW) == 1.0
    assert recency_decay(NOW - timedelta(days=90), NOW) == pytest.approx(0.5)
    # Future timestamps are not boosted
    assert recency_decay(NOW + timedelta(days=3), NOW) == 1.0


# ---------------------------------------------------------------------------
# build_profile
# ---------------------------------------------------------------------------

def test_empty_history_is_cold_start():
    profile = build_profile("u1", [], {}, now=NOW)

    assert profile.rating_count == 0
    assert profile.is_cold_start
    assert profile.average_rating == 0.0
    assert profile.rating_variance == 0.0
    assert profile.session_count == 0
    assert profile.engagement_score == 0.0
    assert profile.runtime_window.min == 60
    assert profile.runtime_window.max == 200
    assert profile.runtime_window.ideal == 120
    assert profile.year_window.min == 1990
    assert profile.year_window.max == 2024


def test_basic_counts():
    events = [
        _event("a", value=6, at=NOW - timedelta(days=2)),
        _event("b", action=ActionKind.VIEW, value=1, at=NOW - timedelta(days=2, minutes=-5)),
        _event("c", value=8, at=NOW),
    ]
    profile = build_profile("u1", events, {}, now=NOW)

    assert profile.rating_count == 2
    assert profile.average_rating == pytest.approx(7.0)
    assert profile.rating_variance == pytest.approx(1.0)
    assert profile.rated_item_ids == {"a", "c"}
    assert profile.time_active_days == pytest.approx(2.0)
    assert profile.session_count == 2
    assert profile.engagement_score == pytest.approx(1.5)
    assert profile.last_active == NOW


def test_rerating_replaces_the_earlier_rating():
    features = {"a": ItemFeatures(item_id="a", genres=("Drama",), directors=("Nolan",))}
    events = [
        _event("a", value=9, at=NOW - timedelta(hours=2)),
        _event("b", value=5, at=NOW - timedelta(hours=1)),
        _event("a", value=3, at=NOW),
    ]
    profile = build_profile("u1", events, features, now=NOW)

    assert profile.rating_count == 2
    assert profile.average_rating == pytest.approx(4.0)
    assert profile.rating_variance == pytest.approx(1.0)
    assert profile.genre_preferences["Drama"] == pytest.approx(0.3)
    # no longer liked
    assert profile.director_preferences == {}


def test_genre_preferences_blend_signal_sources():
    features = {
        "a": ItemFeatures(item_id="a", genres=("Drama",)),
        "b": ItemFeatures(item_id="b", genres=("Drama", "Comedy")),
        "c": ItemFeatures(item_id="c", genres=("Horror",)),
        "d": ItemFeatures(item_id="d", genres=("Western",)),
    }
    events = [
        _event("a", value=8),
        _event("b", action=ActionKind.WATCH_TIME, value=1800),
        _event("c", action=ActionKind.ADD_WATCHLIST, value=1),
        _event("d", action=ActionKind.WATCH_TIME, value=120),  # too short
    ]
    profile = build_profile("u1", events, features, now=NOW)
    prefs = profile.genre_preferences

    assert prefs["Drama"] == pytest.approx((0.8 * 0.6 + 0.5 * 0.3) / 0.9)
    assert prefs["Comedy"] == pytest.approx(0.5)
    assert prefs["Horror"] == pytest.approx(1.0)
    assert "Western" not in prefs


def test_genre_preferences_decay_with_age():
    features = {
        "old": ItemFeatures(item_id="old", genres=("Drama",)),
        "new": ItemFeatures(item_id="new", genres=("Drama",)),
    }
    events = [
        _event("old", value=10, at=NOW - timedelta(days=90)),
        _event("new", value=2, at=NOW),
    ]
    profile = build_profile("u1", events, features, now=NOW)

    assert profile.genre_preferences["Drama"] == pytest.approx((1.0 * 0.3 + 0.2 * 0.6) / 0.9)


def test_people_preferences_from_liked_ratings():
    features = {
        "a": ItemFeatures(item_id="a", directors=("Nolan",), cast=("X", "Y", "Z", "W")),
        "b": ItemFeatures(item_id="b", directors=("Nolan",)),
        "c": ItemFeatures(item_id="c", directors=("Villeneuve",)),
        "d": ItemFeatures(item_id="d", directors=("Bay",), cast=("Q",)),
    }
    events = [
        _event("a", value=10),
        _event("b", value=7),
        _event("c", value=7),
        _event("d", value=5),
    ]
    profile = build_profile("u1", events, features, now=NOW)

    directors = profile.director_preferences
    assert directors["Nolan"] == pytest.approx(1.0)
    assert directors["Villeneuve"] == pytest.approx(0.7 / 1.7)
    assert "Bay" not in directors

    actors = profile.actor_preferences
    assert actors["X"] == pytest.approx(1.0)
    assert actors["Y"] == pytest.approx(0.9)
    assert actors["Z"] == pytest.approx(0.8)
    assert "W" not in actors
    assert "Q" not in actors


def test_windows_need_three_liked_items():
    features = {
        "a": ItemFeatures(item_id="a", runtime=100, year=2000),
        "b": ItemFeatures(item_id="b", runtime=120, year=2005),
        "c": ItemFeatures(item_id="c", runtime=140, year=2010),
    }

    two = build_profile("u1", [_event("a"), _event("b")], features, now=NOW)
    assert (two.runtime_window.min, two.runtime_window.max) == (60, 200)
    assert (two.year_window.min, two.year_window.max) == (1990, 2024)

    three = build_profile("u1", [_event("a"), _event("b"), _event("c")], features, now=NOW)
    assert three.runtime_window.min == 100
    assert three.runtime_window.max == 140
    assert three.runtime_window.ideal == pytest.approx(120)
    assert (three.year_window.min, three.year_window.max) == (2000, 2010)

"""Tests for the collaborative scorer."""

import pytest

from hybridrec.core.collaborative import (
    CollaborativeScorer,
    cosine_similarity,
    nearest_neighbors,
    neighbor_scores,
)
from hybridrec.core.contracts import ActionKind
from hybridrec.ml.embedding import EmbeddingModel


def test_cosine_similarity():
    sim, shared = cosine_similarity({"a": 1, "b": 2, "c": 5}, {"a": 2, "b": 4, "d": 1})
    assert shared == 2
    assert sim == pytest.approx(1.0)

    assert cosine_similarity({"a": 1}, {"b": 1}) == (0.0, 0)


def test_nearest_neighbors_requires_shared_items():
    me = {"a": 8, "b": 7, "c": 3}
    others = {
        "twin": {"a": 8, "b": 7, "c": 3},
        "close": {"a": 7, "b": 8},
        "single": {"a": 8},
        "far": {"x": 9, "y": 2},
    }
    neighbors = nearest_neighbors(me, others, k=5, min_shared=2)

    assert [uid for uid, _ in neighbors] == ["twin", "close"]
    assert neighbors[0][1] == pytest.approx(1.0)


def test_nearest_neighbors_breaks_ties_by_id_and_caps_k():
    me = {"a": 5, "b": 5}
    others = {f"u{i}": {"a": 5, "b": 5} for i in range(5)}

    neighbors = nearest_neighbors(me, others, k=3)
    assert [uid for uid, _ in neighbors] == ["u0", "u1", "u2"]


def test_neighbor_scores():
    neighbors = [("n1", 1.0), ("n2", 0.5)]
    ratings = {"n1": {"x": 10.0}, "n2": {"x": 4.0, "y": 1.0}}

    scores = neighbor_scores(neighbors, ratings, ["x", "y", "z"])

    assert scores["x"] == pytest.approx((8.0 - 1) / 9)
    assert scores["y"] == pytest.approx(0.0)
    assert "z" not in scores


@pytest.mark.anyio
async def test_model_scores_are_normalized(session):
    from hybridrec.storage import InteractionsRepo

    model = EmbeddingModel(seed=2)
    model.build(8, 8, 4)
    model.batch_train([("u1", "m1", 9.0), ("u2", "m2", 3.0)], epochs=3, validation_split=0.0)
    scorer = CollaborativeScorer(model)

    scores = await scorer.score("u1", ["m1", "m2"], {"m1": 9.0}, InteractionsRepo(session))

    assert set(scores) == {"m1", "m2"}
    assert all(0.0 <= s <= 1.0 for s in scores.values())


@pytest.mark.anyio
async def test_falls_back_to_neighbors(session):
    from hybridrec.storage import InteractionsRepo

    repo = InteractionsRepo(session)
    for user, ratings in {
        "u2": {"m1": 8, "m2": 6, "m5": 10},
        "u3": {"m1": 7, "m2": 7, "m5": 9, "m6": 2},
    }.items():
        for item, value in ratings.items():
            await repo.append(user, item, ActionKind.RATE, value)

    # unbuilt model: everything goes to the neighbour fallback
    scorer = CollaborativeScorer(EmbeddingModel())
    scores = await scorer.score("u1", ["m5", "m6", "m7"], {"m1": 8.0, "m2": 6.0}, repo)

    assert set(scores) == {"m5", "m6"}
    assert scores["m5"] > scores["m6"]
    assert scores["m6"] == pytest.approx((2 - 1) / 9)


@pytest.mark.anyio
async def test_no_history_scores_nothing(session):
    from hybridrec.storage import InteractionsRepo

    scorer = CollaborativeScorer(None)
    assert await scorer.score("u1", ["m1"], {}, InteractionsRepo(session)) == {}

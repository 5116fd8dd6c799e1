"""Tests for the hybrid recommendation engine."""

from unittest.mock import AsyncMock

import pytest
from pydantic import ValidationError

from hybridrec.core.contracts import ActionKind, ItemFeatures
from hybridrec.core.scoring import popularity_score

CATALOG = [
    ItemFeatures(item_id="m1", title="One", genres=("Drama",), directors=("A",), year=2001, runtime=110,
                 popularity=80, vote_average=8.0, vote_count=5000),
    ItemFeatures(item_id="m2", title="Two", genres=("Drama", "Crime"), directors=("B",), year=2010, runtime=130,
                 popularity=60, vote_average=7.5, vote_count=3000),
    ItemFeatures(item_id="m3", title="Three", genres=("Comedy",), directors=("C",), year=1999, runtime=95,
                 popularity=40, vote_average=6.0, vote_count=800),
    ItemFeatures(item_id="m4", title="Four", genres=("Horror",), directors=("D",), year=2018, runtime=100,
                 popularity=20, vote_average=5.5, vote_count=300),
    ItemFeatures(item_id="m5", title="Five", genres=("Drama",), directors=("A",), year=2005, runtime=140,
                 popularity=10, vote_average=8.8, vote_count=12000),
]

OPEN = {"min_score": 0.0, "diversity_factor": 0.0, "count": 10}


@pytest.fixture
async def engine(session_factory, redis_client):
    from hybridrec.core.cache import RecommendationCache, RedisCache
    from hybridrec.core.engine import HybridRecommendationEngine
    from hybridrec.learning.pipeline import OnlineLearningPipeline, PipelineSettings
    from hybridrec.ml.embedding import EmbeddingModel
    from hybridrec.storage import ItemsRepo

    async with session_factory() as session:
        repo = ItemsRepo(session)
        for item in CATALOG:
            await repo.upsert_item(item)

    model = EmbeddingModel(seed=9)
    model.build(32, 32, 4)
    pipeline = OnlineLearningPipeline(
        model,
        session_factory,
        settings=PipelineSettings(batch_size=100, immediate_threshold=1.0),
    )
    return HybridRecommendationEngine(
        session_factory,
        model,
        RecommendationCache(RedisCache(redis_client), ttl_seconds=300),
        pipeline=pipeline,
    )


@pytest.mark.anyio
async def test_cold_start_uses_popularity(engine):
    items = await engine.generate_recommendations("newbie", OPEN)
    catalog = {c.item_id: c for c in CATALOG}

    assert [i.item_id for i in items] == ["m1", "m2", "m5", "m3", "m4"]
    for item in items:
        expected = popularity_score(catalog[item.item_id])
        assert item.content_score == pytest.approx(expected)
        assert item.collaborative_score == 0.0
        assert item.score == pytest.approx(0.5 * expected + 0.4 * expected)
        assert item.weights.total() == pytest.approx(1.0)


@pytest.mark.anyio
async def test_results_are_sorted_and_bounded(engine):
    items = await engine.generate_recommendations("u1", {"min_score": 0.0, "count": 2})

    assert len(items) == 2
    assert items[0].score >= items[1].score


@pytest.mark.anyio
async def test_min_score_filters_everything(engine):
    assert await engine.generate_recommendations("u1", {"min_score": 1.0}) == []


@pytest.mark.anyio
async def test_rated_and_watchlisted_items_are_excluded(engine):
    await engine.record_rating("u1", "m1", 9)
    await engine.record_interaction("u1", "m2", ActionKind.ADD_WATCHLIST)

    ids = {i.item_id for i in await engine.generate_recommendations("u1", OPEN)}
    assert ids == {"m3", "m4", "m5"}

    kept = {
        i.item_id
        for i in await engine.generate_recommendations(
            "u1", {**OPEN, "exclude_rated": False, "exclude_watchlisted": False}
        )
    }
    assert kept == {"m1", "m2", "m3", "m4", "m5"}


@pytest.mark.anyio
async def test_filters_are_applied(engine):
    items = await engine.generate_recommendations("u1", {**OPEN, "genres": ["Drama"], "year_min": 2003})
    assert {i.item_id for i in items} == {"m2", "m5"}


@pytest.mark.anyio
async def test_profile_drives_content_score(engine):
    for item_id, rating in [("m1", 9), ("m2", 8), ("m3", 2), ("m4", 3), ("x1", 5)]:
        await engine.record_rating("u1", item_id, rating)

    items = await engine.generate_recommendations(
        "u1", {**OPEN, "exclude_rated": False, "include_explanations": True}
    )
    by_id = {i.item_id: i for i in items}

    # five ratings: building-profile weights
    assert by_id["m5"].weights.content == pytest.approx(0.6)
    # m5 shares genre and director with the liked m1
    assert by_id["m5"].content_score > by_id["m4"].content_score
    assert all(i.explanations is not None for i in items)


@pytest.mark.anyio
async def test_works_with_unbuilt_model(session_factory, redis_client, engine):
    from hybridrec.core.cache import RecommendationCache, RedisCache
    from hybridrec.core.engine import HybridRecommendationEngine
    from hybridrec.ml.embedding import EmbeddingModel

    bare = HybridRecommendationEngine(
        session_factory, EmbeddingModel(), RecommendationCache(RedisCache(redis_client, namespace="bare:"))
    )
    items = await bare.generate_recommendations("u1", OPEN)
    assert len(items) == len(CATALOG)


@pytest.mark.anyio
async def test_failed_source_contributes_nothing(engine):
    engine.collaborative.score = AsyncMock(side_effect=RuntimeError("boom"))

    items = await engine.generate_recommendations("u1", OPEN)

    assert len(items) == len(CATALOG)
    assert all(i.collaborative_score == 0.0 for i in items)
    assert engine.metrics_sink.counter("recommendations.collaborative_errors") == 1


@pytest.mark.anyio
async def test_invalid_options_are_rejected(engine):
    with pytest.raises(ValidationError):
        await engine.generate_recommendations("u1", {"count": 0})
    with pytest.raises(ValidationError):
        await engine.generate_recommendations("u1", {"year_min": 2020, "year_max": 2000})
    with pytest.raises(ValidationError):
        await engine.generate_recommendations("u1", {"unknown": True})


class TestCaching:
    @pytest.mark.anyio
    async def test_second_request_is_served_from_cache(self, engine):
        first = await engine.generate_recommendations("u1", OPEN)
        second = await engine.generate_recommendations("u1", OPEN)

        assert [i.item_id for i in second] == [i.item_id for i in first]
        assert [i.score for i in second] == pytest.approx([i.score for i in first])
        assert engine.metrics_sink.counter("recommendations.cache_misses") == 1
        assert engine.metrics_sink.counter("recommendations.cache_hits") == 1

    @pytest.mark.anyio
    async def test_rating_invalidates_cached_results(self, engine):
        await engine.generate_recommendations("u1", OPEN)
        await engine.record_rating("u1", "m3", 7)

        items = await engine.generate_recommendations("u1", OPEN)

        assert "m3" not in {i.item_id for i in items}
        assert engine.metrics_sink.counter("recommendations.cache_misses") == 2
        recent = await engine.cache.recent_ratings("u1")
        assert recent[0]["item_id"] == "m3"

    @pytest.mark.anyio
    async def test_rating_during_ranking_is_not_shadowed(self, engine):
        rank = engine._rank

        async def rank_then_rate(session, user_id, options):
            results = await rank(session, user_id, options)
            await engine.record_rating("u1", "m1", 9.0)
            return results

        engine._rank = rank_then_rate
        first = await engine.generate_recommendations("u1", OPEN)
        engine._rank = rank

        assert "m1" in {i.item_id for i in first}
        served = await engine.generate_recommendations("u1", OPEN)
        assert "m1" not in {i.item_id for i in served}
        assert engine.metrics_sink.counter("recommendations.cache_hits") == 0
        assert engine.metrics_sink.counter("recommendations.cache_misses") == 2

    @pytest.mark.anyio
    async def test_cached_results_skip_recently_rated_items(self, engine):
        await engine.generate_recommendations("u1", OPEN)
        # rating recorded by another worker: the list is shared, the cached entry stays
        await engine.cache.push_recent_rating("u1", "m2", 8.0, 0.0)

        served = await engine.generate_recommendations("u1", OPEN)
        assert [i.item_id for i in served] == ["m1", "m5", "m3", "m4"]
        assert engine.metrics_sink.counter("recommendations.cache_hits") == 1

        kept = await engine.generate_recommendations("u1", {**OPEN, "exclude_rated": False})
        assert "m2" in {i.item_id for i in kept}


class TestIngestion:
    @pytest.mark.anyio
    async def test_valid_rating_is_stored_and_queued(self, engine, session_factory):
        from hybridrec.storage import InteractionsRepo

        result = await engine.record_rating("u1", "m1", "8.5")

        assert result.event.value == 8.5
        assert result.update is not None
        assert 0.0 <= result.update.priority <= 1.0
        assert len(engine.pipeline.queue) == 1
        async with session_factory() as session:
            assert await InteractionsRepo(session).get_user_ratings("u1") == {"m1": 8.5}

    @pytest.mark.anyio
    @pytest.mark.parametrize("rating", [0, 11, -3, float("nan"), float("inf"), "abc", None])
    async def test_invalid_rating_is_never_stored(self, engine, session_factory, rating):
        from hybridrec.errors import InvalidInteraction
        from hybridrec.storage import InteractionsRepo

        with pytest.raises(InvalidInteraction):
            await engine.record_rating("u1", "m1", rating)

        assert len(engine.pipeline.queue) == 0
        async with session_factory() as session:
            assert len(await InteractionsRepo(session).list_user_events("u1")) == 0

    @pytest.mark.anyio
    async def test_empty_ids_are_rejected(self, engine):
        from hybridrec.errors import InvalidInteraction

        with pytest.raises(InvalidInteraction):
            await engine.record_rating("", "m1", 5)
        with pytest.raises(InvalidInteraction):
            await engine.record_rating("u1", "  ", 5)

    @pytest.mark.anyio
    async def test_interactions(self, engine, session_factory):
        from hybridrec.errors import InvalidInteraction
        from hybridrec.storage import InteractionsRepo

        await engine.record_interaction("u1", "m1", "view")
        await engine.record_interaction("u1", "m1", ActionKind.WATCH_TIME, 1800)
        rated = await engine.record_interaction("u1", "m2", ActionKind.RATE, 6)

        assert rated.update is not None
        with pytest.raises(InvalidInteraction):
            await engine.record_interaction("u1", "m1", "teleport")
        with pytest.raises(InvalidInteraction):
            await engine.record_interaction("u1", "m1", ActionKind.WATCH_TIME, -10)

        async with session_factory() as session:
            assert len(await InteractionsRepo(session).list_user_events("u1")) == 3
        assert engine.metrics_sink.counter("interactions.watch_time") == 1


@pytest.mark.anyio
async def test_metrics_include_model_state(engine):
    await engine.generate_recommendations("u1", OPEN)
    metrics = engine.get_metrics()

    assert metrics["model"]["built"] is True
    assert metrics["counters"]["recommendations.generated"] == 1
    assert metrics["timers"]["recommendations.seconds"]["count"] == 1

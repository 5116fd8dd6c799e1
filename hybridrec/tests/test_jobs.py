"""Tests for scheduled jobs."""

from dataclasses import replace
from unittest.mock import patch

import pytest


@pytest.fixture
def runtime(session_factory, redis_client):
    from hybridrec.config import config
    from hybridrec.runtime import create_runtime, set_runtime

    rt = create_runtime(config, session_factory=session_factory, redis_client=redis_client)
    rt.model.build(32, 32, 4)
    set_runtime(rt)

    yield rt

    set_runtime(None)


@pytest.mark.anyio
async def test_learning_batch_job(runtime):
    from hybridrec.jobs.learning_batch import run_learning_batch

    assert await run_learning_batch() == {"processed": 0, "skipped": True}

    await runtime.pipeline.process_new_rating("u1", "m1", 7.0)
    await runtime.pipeline.process_new_rating("u2", "m1", 5.0)

    summary = await run_learning_batch()
    assert summary["processed"] == 2
    assert summary["success"] is True
    assert len(runtime.pipeline.queue) == 0


@pytest.mark.anyio
async def test_model_training_job(runtime, session_factory, tmp_path):
    from hybridrec.config import config
    from hybridrec.core.contracts import ActionKind
    from hybridrec.jobs.train_model import run_model_training
    from hybridrec.ml.artifacts import list_versions
    from hybridrec.storage import EventsRepo, InteractionsRepo

    cfg = replace(
        config,
        model_dir=str(tmp_path / "models"),
        model_user_capacity=8,
        model_item_capacity=8,
        model_factors=4,
        model_epochs=3,
        model_batch_size=4,
        model_validation_split=0.0,
    )

    with patch("hybridrec.storage.get_session_factory", return_value=session_factory):
        assert (await run_model_training(cfg))["samples"] == 0

        async with session_factory() as session:
            repo = InteractionsRepo(session)
            for user, item, rating in [("u1", "m1", 8), ("u1", "m2", 3), ("u2", "m1", 9), ("u2", "m3", 6)]:
                await repo.append(user, item, ActionKind.RATE, rating)

        summary = await run_model_training(cfg)

    assert summary["samples"] == 4
    assert summary["users"] == 2
    assert summary["items"] == 3
    assert summary["published"] is True
    assert list_versions(cfg.model_dir) == [summary["version"]]
    assert runtime.model.snapshot().has_user("u2")

    async with session_factory() as session:
        assert await EventsRepo(session).count_events("model_trained") == 1


@pytest.mark.anyio
async def test_model_training_not_published_while_live_model_trains(runtime, session_factory, tmp_path):
    from hybridrec.config import config
    from hybridrec.core.contracts import ActionKind
    from hybridrec.jobs.train_model import run_model_training
    from hybridrec.storage import InteractionsRepo

    cfg = replace(config, model_dir=str(tmp_path), model_factors=4, model_epochs=1,
                  model_user_capacity=8, model_item_capacity=8)
    async with session_factory() as session:
        await InteractionsRepo(session).append("u1", "m1", ActionKind.RATE, 8)

    runtime.model._train_lock.acquire()
    try:
        with patch("hybridrec.storage.get_session_factory", return_value=session_factory):
            summary = await run_model_training(cfg)
    finally:
        runtime.model._train_lock.release()

    assert summary["version"] is not None
    assert summary["published"] is False
    assert not runtime.model.snapshot().has_user("u1")


def test_prepare_model_builds_or_loads(tmp_path):
    from hybridrec.config import config
    from hybridrec.ml.embedding import EmbeddingModel
    from hybridrec.runtime import prepare_model

    cfg = replace(config, model_dir=str(tmp_path), model_user_capacity=4,
                  model_item_capacity=4, model_factors=2)

    fresh = EmbeddingModel(seed=1)
    prepare_model(fresh, cfg)
    assert fresh.snapshot().user_capacity == 4

    fresh.incremental_train("u1", "m1", 7.0)
    version = fresh.save(tmp_path)

    loaded = EmbeddingModel()
    prepare_model(loaded, cfg)
    assert loaded.snapshot().has_user("u1")
    assert loaded.snapshot().version == fresh.snapshot().version
    assert (tmp_path / version / "metadata.json").exists()


class TestScheduler:
    def teardown_method(self):
        from hybridrec.jobs.scheduler import shutdown_scheduler

        shutdown_scheduler()

    def test_setup_all_jobs(self):
        from hybridrec.jobs.scheduler import (
            LEARNING_BATCH_JOB_ID,
            MODEL_TRAINING_JOB_ID,
            get_scheduler,
            setup_all_jobs,
        )

        setup_all_jobs()

        scheduler = get_scheduler()
        assert scheduler.get_job(LEARNING_BATCH_JOB_ID) is not None
        assert scheduler.get_job(MODEL_TRAINING_JOB_ID) is not None

    def test_standalone_setup_skips_learning(self):
        from hybridrec.jobs.scheduler import LEARNING_BATCH_JOB_ID, get_scheduler, setup_all_jobs

        setup_all_jobs(include_learning=False)

        assert get_scheduler().get_job(LEARNING_BATCH_JOB_ID) is None

    def test_training_job_can_be_disabled(self):
        from hybridrec.config import config
        from hybridrec.jobs.scheduler import setup_model_training_job

        with patch("hybridrec.config.config", replace(config, model_training_enabled=False)):
            assert setup_model_training_job() is None

    def test_remove_missing_job(self):
        from hybridrec.jobs.scheduler import remove_job

        assert remove_job("does-not-exist") is False

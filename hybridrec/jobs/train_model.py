"""Full retraining of the embedding model from the rating log.

Trains a fresh model off to the side, saves it as a new artifact version
and then publishes it to the running service.
"""

import asyncio

from hybridrec.config import Config
from hybridrec.errors import TrainingInProgress
from hybridrec.logging import get_logger
from hybridrec.ml.embedding import EmbeddingModel

logger = get_logger(__name__)

MAX_TRAINING_SAMPLES = 1_000_000


async def run_model_training(cfg: Config | None = None) -> dict:
    """Retrain from all stored ratings.

    Args:
        cfg: Configuration, defaults to the global config

    Returns:
        Summary dict with sample counts, losses and the saved version
    """
    from hybridrec.runtime import get_runtime
    from hybridrec.storage import EventsRepo, InteractionsRepo, get_session_factory

    if cfg is None:
        from hybridrec.config import config as cfg

    session_factory = get_session_factory()
    async with session_factory() as session:
        samples = await InteractionsRepo(session).list_all_ratings(limit=MAX_TRAINING_SAMPLES)

    if not samples:
        logger.info("Model training skipped: no ratings yet")
        return {"samples": 0, "version": None}

    users = {u for u, _, _ in samples}
    items = {i for _, i, _ in samples}
    candidate = EmbeddingModel(
        learning_rate=cfg.model_learning_rate,
        regularization=cfg.model_regularization,
    )
    candidate.build(
        max(cfg.model_user_capacity, len(users)),
        max(cfg.model_item_capacity, len(items)),
        cfg.model_factors,
    )

    history = await asyncio.to_thread(
        candidate.batch_train,
        samples,
        epochs=cfg.model_epochs,
        batch_size=cfg.model_batch_size,
        validation_split=cfg.model_validation_split,
    )
    version = await asyncio.to_thread(candidate.save, cfg.model_dir)

    summary = {
        "samples": history.samples,
        "skipped": history.skipped,
        "users": len(users),
        "items": len(items),
        "final_loss": history.final_loss,
        "final_val_loss": history.val_loss[-1] if history.val_loss else None,
        "version": version,
        "published": False,
    }

    live = get_runtime().model
    try:
        live.restore(candidate.snapshot())
        summary["published"] = True
    except TrainingInProgress:
        logger.warning(f"Model version {version} saved but not published: live model is training")

    async with session_factory() as session:
        await EventsRepo(session).log_event("model_trained", payload=summary)

    logger.info("Model training complete", extra={"context": summary})
    return summary

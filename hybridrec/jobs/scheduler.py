"""APScheduler configuration and job management."""

from apscheduler.jobstores.base import JobLookupError
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from hybridrec.logging import get_logger

logger = get_logger(__name__)

_scheduler: AsyncIOScheduler | None = None

LEARNING_BATCH_JOB_ID = "learning_batch"
MODEL_TRAINING_JOB_ID = "model_training"


def get_scheduler() -> AsyncIOScheduler:
    """Get or create the scheduler instance."""
    global _scheduler

    if _scheduler is None:
        logger.info("Creating scheduler")
        _scheduler = AsyncIOScheduler(
            jobstores={"default": MemoryJobStore()},
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 60,
            },
        )

    return _scheduler


def start_scheduler() -> None:
    """Start the scheduler if not already running."""
    scheduler = get_scheduler()
    if not scheduler.running:
        logger.info("Starting scheduler")
        scheduler.start()


def shutdown_scheduler() -> None:
    """Shutdown the scheduler gracefully."""
    global _scheduler
    if _scheduler is not None and _scheduler.running:
        logger.info("Shutting down scheduler")
        _scheduler.shutdown(wait=True)
    _scheduler = None


def remove_job(job_id: str) -> bool:
    """Remove a job from the scheduler."""
    scheduler = get_scheduler()
    try:
        scheduler.remove_job(job_id)
        logger.info(f"Removed job {job_id}")
        return True
    except JobLookupError:
        return False


# ------------------------------------------------------------------
# Individual job setup helpers
# ------------------------------------------------------------------

def setup_learning_batch_job() -> str:
    """Schedule the online learning batch timer."""
    from hybridrec.config import config
    from hybridrec.jobs.learning_batch import run_learning_batch

    scheduler = get_scheduler()
    remove_job(LEARNING_BATCH_JOB_ID)

    job = scheduler.add_job(
        run_learning_batch,
        "interval",
        seconds=config.learning_interval_seconds,
        id=LEARNING_BATCH_JOB_ID,
        name="Online Learning Batch",
        replace_existing=True,
        misfire_grace_time=max(int(config.learning_interval_seconds), 1),
    )
    logger.info(
        f"Scheduled learning_batch: every {config.learning_interval_seconds}s, job_id={job.id}"
    )
    return job.id


def setup_model_training_job() -> str | None:
    """Schedule periodic full retraining of the embedding model."""
    from hybridrec.config import config

    if not config.model_training_enabled:
        logger.info("Model training job not scheduled: MODEL_TRAINING_ENABLED=false")
        return None

    from hybridrec.jobs.train_model import run_model_training

    scheduler = get_scheduler()
    remove_job(MODEL_TRAINING_JOB_ID)

    job = scheduler.add_job(
        run_model_training,
        "interval",
        hours=config.model_training_interval_hours,
        id=MODEL_TRAINING_JOB_ID,
        name="Embedding Model Training",
        replace_existing=True,
    )
    logger.info(
        f"Scheduled model_training: every {config.model_training_interval_hours}h, job_id={job.id}"
    )
    return job.id


def setup_all_jobs(include_learning: bool = True) -> None:
    """Setup all scheduled jobs.

    Args:
        include_learning: Schedule the pipeline timer. The pipeline queue is
            in-process, so a standalone scheduler process leaves it out.
    """
    if include_learning:
        setup_learning_batch_job()
    setup_model_training_job()
    logger.info("All jobs configured")

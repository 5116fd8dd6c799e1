"""Jobs module for scheduled tasks and background processing."""

from hybridrec.jobs.learning_batch import run_learning_batch
from hybridrec.jobs.scheduler import (
    get_scheduler,
    remove_job,
    setup_all_jobs,
    setup_learning_batch_job,
    setup_model_training_job,
    shutdown_scheduler,
    start_scheduler,
)
from hybridrec.jobs.train_model import run_model_training

__all__ = [
    "get_scheduler",
    "remove_job",
    "run_learning_batch",
    "run_model_training",
    "setup_all_jobs",
    "setup_learning_batch_job",
    "setup_model_training_job",
    "shutdown_scheduler",
    "start_scheduler",
]

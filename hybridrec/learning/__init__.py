"""Online learning: priority queue and batch training pipeline."""

from hybridrec.learning.pipeline import (
    LearningMetrics,
    OnlineLearningPipeline,
    PipelineSettings,
    QueueStatus,
    compute_priority,
)
from hybridrec.learning.queue import PendingUpdate, UpdateQueue

__all__ = [
    "LearningMetrics",
    "OnlineLearningPipeline",
    "PipelineSettings",
    "QueueStatus",
    "compute_priority",
    "PendingUpdate",
    "UpdateQueue",
]

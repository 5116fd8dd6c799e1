"""Learned model components."""

from hybridrec.ml.embedding import (
    DEFAULT_FACTORS,
    EmbeddingModel,
    ModelSnapshot,
    Prediction,
    TrainingHistory,
)

__all__ = [
    "DEFAULT_FACTORS",
    "EmbeddingModel",
    "ModelSnapshot",
    "Prediction",
    "TrainingHistory",
]

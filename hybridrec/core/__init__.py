"""Core module containing domain types and the pure scoring logic.

The engine itself lives in ``hybridrec.core.engine`` and is not re-exported
here, since it depends on storage and learning.
"""

from hybridrec.core.contracts import (
    ActionKind,
    InteractionEvent,
    ItemFeatures,
    PreferenceProfile,
    RecommendationItem,
    RecommendationOptions,
    Weights,
)
from hybridrec.core.hybrid import (
    apply_diversity,
    combine_scores,
    finalize,
    generate_explanations,
    select_weights,
)
from hybridrec.core.profile import build_profile, group_sessions, rating_variance
from hybridrec.core.scoring import (
    content_score,
    normalize_rating,
    popularity_score,
)

__all__ = [
    # Contracts/Types
    "ActionKind",
    "InteractionEvent",
    "ItemFeatures",
    "PreferenceProfile",
    "RecommendationItem",
    "RecommendationOptions",
    "Weights",
    # Profile
    "build_profile",
    "group_sessions",
    "rating_variance",
    # Scoring
    "content_score",
    "normalize_rating",
    "popularity_score",
    # Hybrid
    "select_weights",
    "combine_scores",
    "generate_explanations",
    "apply_diversity",
    "finalize",
]

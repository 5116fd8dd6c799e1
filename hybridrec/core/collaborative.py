"""Collaborative scorer: embedding model first, nearest neighbours as fallback."""

import math
from typing import Sequence

from hybridrec.core.scoring import normalize_rating
from hybridrec.errors import NoCoverage, PreconditionViolation
from hybridrec.logging import get_logger
from hybridrec.ml.embedding import EmbeddingModel
from hybridrec.storage.repo_interactions import InteractionsRepo

logger = get_logger(__name__)

DEFAULT_NEIGHBORS = 20
MIN_SHARED_ITEMS = 2


def cosine_similarity(a: dict[str, float], b: dict[str, float]) -> tuple[float, int]:
    """Cosine similarity over co-rated items.

    Returns:
        Tuple (similarity, number of shared items)
    """
    shared = a.keys() & b.keys()
    if not shared:
        return 0.0, 0

    dot = sum(a[k] * b[k] for k in shared)
    norm_a = math.sqrt(sum(a[k] ** 2 for k in shared))
    norm_b = math.sqrt(sum(b[k] ** 2 for k in shared))
    if norm_a == 0 or norm_b == 0:
        return 0.0, len(shared)
    return dot / (norm_a * norm_b), len(shared)


def nearest_neighbors(
    user_ratings: dict[str, float],
    others: dict[str, dict[str, float]],
    k: int = DEFAULT_NEIGHBORS,
    min_shared: int = MIN_SHARED_ITEMS,
) -> list[tuple[str, float]]:
    """Top-k users by positive cosine similarity, ties broken by user ID."""
    scored = []
    for other_id, ratings in others.items():
        similarity, shared = cosine_similarity(user_ratings, ratings)
        if shared >= min_shared and similarity > 0:
            scored.append((other_id, similarity))

    scored.sort(key=lambda pair: (-pair[1], pair[0]))
    return scored[:k]


def neighbor_scores(
    neighbors: Sequence[tuple[str, float]],
    neighbor_ratings: dict[str, dict[str, float]],
    item_ids: Sequence[str],
) -> dict[str, float]:
    """Similarity-weighted mean neighbour rating per item, normalized.

    Items no neighbour has rated are left out.
    """
    scores: dict[str, float] = {}
    for item_id in item_ids:
        weighted = 0.0
        total = 0.0
        for user_id, similarity in neighbors:
            rating = neighbor_ratings.get(user_id, {}).get(item_id)
            if rating is not None:
                weighted += similarity * rating
                total += similarity
        if total > 0:
            scores[item_id] = normalize_rating(weighted / total)
    return scores


class CollaborativeScorer:
    """Scores candidates from the learned model and falls back to neighbours.

    Model errors (not built, no coverage) are recovered here and never
    reach the caller.
    """

    def __init__(
        self,
        model: EmbeddingModel | None,
        neighbor_count: int = DEFAULT_NEIGHBORS,
        min_shared: int = MIN_SHARED_ITEMS,
    ) -> None:
        self.model = model
        self.neighbor_count = neighbor_count
        self.min_shared = min_shared

    def score_from_model(self, user_id: str, item_ids: Sequence[str]) -> tuple[dict[str, float], list[str]]:
        """Score items covered by the model.

        Returns:
            Tuple (scores of covered items, IDs needing the fallback)
        """
        if self.model is None:
            return {}, list(item_ids)

        try:
            predictions = self.model.predict(user_id, item_ids)
        except PreconditionViolation:
            logger.debug("Embedding model not built, using neighbour fallback")
            return {}, list(item_ids)
        except NoCoverage:
            logger.debug(f"No model coverage for user {user_id}, using neighbour fallback")
            return {}, list(item_ids)

        scores: dict[str, float] = {}
        missing: list[str] = []
        for prediction in predictions:
            if prediction.covered:
                scores[prediction.item_id] = normalize_rating(prediction.rating)
            else:
                missing.append(prediction.item_id)
        return scores, missing

    async def score_from_neighbors(
        self,
        user_id: str,
        item_ids: Sequence[str],
        user_ratings: dict[str, float],
        interactions: InteractionsRepo,
    ) -> dict[str, float]:
        if not item_ids or len(user_ratings) < self.min_shared:
            return {}

        others = await interactions.get_ratings_for_items(
            set(user_ratings), exclude_user_id=user_id
        )
        neighbors = nearest_neighbors(
            user_ratings, others, k=self.neighbor_count, min_shared=self.min_shared
        )
        if not neighbors:
            return {}

        neighbor_ids = {uid for uid, _ in neighbors}
        candidate_ratings = await interactions.get_ratings_for_items(
            set(item_ids), exclude_user_id=user_id
        )
        candidate_ratings = {
            uid: ratings for uid, ratings in candidate_ratings.items() if uid in neighbor_ids
        }
        return neighbor_scores(neighbors, candidate_ratings, item_ids)

    async def score(
        self,
        user_id: str,
        item_ids: Sequence[str],
        user_ratings: dict[str, float],
        interactions: InteractionsRepo,
    ) -> dict[str, float]:
        """Collaborative scores in [0, 1] keyed by item ID.

        Args:
            user_id: User ID
            item_ids: Candidate item IDs
            user_ratings: The user's latest rating per item
            interactions: Repository used by the neighbour fallback

        Returns:
            Scores for items with model coverage or neighbour data; other
            items are absent
        """
        scores, missing = self.score_from_model(user_id, item_ids)
        if missing:
            fallback = await self.score_from_neighbors(
                user_id, missing, user_ratings, interactions
            )
            scores.update(fallback)
            logger.debug(
                f"Collaborative scores for {user_id}: model={len(item_ids) - len(missing)}, "
                f"neighbours={len(fallback)}, none={len(missing) - len(fallback)}"
            )
        return scores

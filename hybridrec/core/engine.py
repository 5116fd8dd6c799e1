"""Hybrid recommendation engine: request orchestration and rating ingestion."""

import asyncio
import math
import time
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hybridrec.core.cache import RecommendationCache
from hybridrec.core.collaborative import CollaborativeScorer
from hybridrec.core.contracts import (
    MAX_RATING,
    MIN_RATING,
    ActionKind,
    InteractionEvent,
    RecommendationItem,
    RecommendationOptions,
)
from hybridrec.core.hybrid import apply_diversity, combine_scores, finalize, select_weights
from hybridrec.core.profile import build_profile
from hybridrec.core.scoring import score_content, score_popularity
from hybridrec.errors import InvalidInteraction
from hybridrec.learning.pipeline import OnlineLearningPipeline
from hybridrec.learning.queue import PendingUpdate
from hybridrec.logging import get_logger
from hybridrec.ml.embedding import EmbeddingModel
from hybridrec.observability.metrics import MetricsSink
from hybridrec.storage import InteractionsRepo, ItemsRepo

logger = get_logger(__name__)

SOURCES = ("content", "collaborative", "popularity")


@dataclass(frozen=True)
class IngestResult:
    """Stored interaction plus the pending model update it produced, if any."""

    event: InteractionEvent
    update: PendingUpdate | None = None


def _check_ids(user_id: str, item_id: str) -> None:
    if not isinstance(user_id, str) or not user_id.strip():
        raise InvalidInteraction("user_id must be a non-empty string")
    if not isinstance(item_id, str) or not item_id.strip():
        raise InvalidInteraction("item_id must be a non-empty string")


def validate_rating(rating: Any) -> float:
    """Coerce and range-check a rating.

    Raises:
        InvalidInteraction: If the rating is not a finite number in [1, 10]
    """
    try:
        value = float(rating)
    except (TypeError, ValueError) as e:
        raise InvalidInteraction(f"rating must be a number, got {rating!r}") from e
    if not math.isfinite(value) or not MIN_RATING <= value <= MAX_RATING:
        raise InvalidInteraction(
            f"rating must be within [{MIN_RATING:g}, {MAX_RATING:g}], got {rating!r}"
        )
    return value


class HybridRecommendationEngine:
    """Ranks candidate items for a user and ingests feedback.

    Recommendation requests never fail because the embedding model is
    unavailable; the collaborative source then falls back to neighbours or
    contributes nothing.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        model: EmbeddingModel | None,
        cache: RecommendationCache,
        pipeline: OnlineLearningPipeline | None = None,
        metrics_sink: MetricsSink | None = None,
        max_candidates: int = 500,
        neighbor_count: int = 20,
        profile_max_events: int = 1000,
    ) -> None:
        self.session_factory = session_factory
        self.model = model
        self.cache = cache
        self.pipeline = pipeline
        self.metrics_sink = metrics_sink or MetricsSink()
        self.max_candidates = max_candidates
        self.profile_max_events = profile_max_events
        self.collaborative = CollaborativeScorer(model, neighbor_count=neighbor_count)

    # ------------------------------------------------------------------
    # Recommendations
    # ------------------------------------------------------------------

    async def generate_recommendations(
        self,
        user_id: str,
        options: RecommendationOptions | dict[str, Any] | None = None,
    ) -> list[RecommendationItem]:
        """Generate ranked recommendations for a user.

        Args:
            user_id: User ID
            options: Request options; a dict is validated into
                RecommendationOptions

        Returns:
            Up to ``options.count`` items, best first

        Raises:
            pydantic.ValidationError: If options are malformed
        """
        if options is None:
            options = RecommendationOptions()
        elif not isinstance(options, RecommendationOptions):
            options = RecommendationOptions.model_validate(options)

        started = time.monotonic()

        cached = await self.cache.get(user_id, options)
        if cached is not None:
            self.metrics_sink.increment("recommendations.cache_hits")
            if options.exclude_rated:
                # entries written by another worker may predate a rating
                fresh = await self.cache.recently_rated_ids(user_id)
                cached = [item for item in cached if item.item_id not in fresh]
            logger.debug(f"Serving {len(cached)} cached recommendations for {user_id}")
            return cached
        self.metrics_sink.increment("recommendations.cache_misses")

        generation = self.cache.generation(user_id)
        async with self.session_factory() as session:
            results = await self._rank(session, user_id, options)

        await self.cache.set(user_id, options, results, generation=generation)

        elapsed = time.monotonic() - started
        self.metrics_sink.increment("recommendations.generated")
        self.metrics_sink.increment("recommendations.items", len(results))
        self.metrics_sink.timing("recommendations.seconds", elapsed)
        if results:
            avg = sum(item.score for item in results) / len(results)
            self.metrics_sink.gauge("recommendations.last_avg_score", avg)

        logger.info(
            f"Generated {len(results)} recommendations for {user_id} in {elapsed * 1000:.1f}ms"
        )
        return results

    async def _rank(
        self,
        session: AsyncSession,
        user_id: str,
        options: RecommendationOptions,
    ) -> list[RecommendationItem]:
        interactions = InteractionsRepo(session)
        items_repo = ItemsRepo(session)

        events = await interactions.list_user_events(user_id, limit=self.profile_max_events)
        features = await items_repo.get_features({e.item_id for e in events})
        profile = build_profile(user_id, events, features)

        user_ratings = await interactions.get_user_ratings(user_id)
        exclude: set[str] = set()
        if options.exclude_rated:
            exclude |= user_ratings.keys()
        if options.exclude_watchlisted:
            exclude |= await interactions.get_watchlisted_item_ids(user_id)

        candidates = await items_repo.list_candidates(
            exclude_ids=exclude,
            genres=options.genres,
            year_min=options.year_min,
            year_max=options.year_max,
            language=options.language,
            min_vote_average=options.min_vote_average,
            min_vote_count=options.min_vote_count,
            limit=self.max_candidates,
        )
        if not candidates:
            logger.info(f"No candidates for {user_id} after filtering")
            return []

        weights = select_weights(profile.rating_count)
        item_ids = [c.item_id for c in candidates]

        async def content() -> dict[str, float]:
            if profile.is_cold_start:
                return score_popularity(candidates)
            return score_content(profile, candidates)

        async def popularity() -> dict[str, float]:
            return score_popularity(candidates)

        outcomes = await asyncio.gather(
            content(),
            self.collaborative.score(user_id, item_ids, user_ratings, interactions),
            popularity(),
            return_exceptions=True,
        )

        scores: list[dict[str, float]] = []
        for source, outcome in zip(SOURCES, outcomes):
            if isinstance(outcome, Exception):
                logger.error(f"{source} scorer failed for {user_id}: {outcome}")
                self.metrics_sink.increment(f"recommendations.{source}_errors")
                scores.append({})
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                scores.append(outcome)

        combined = combine_scores(
            candidates,
            scores[0],
            scores[1],
            scores[2],
            weights,
            include_explanations=options.include_explanations,
        )
        diversified = apply_diversity(combined, options.diversity_factor)
        return finalize(diversified, options.min_score, options.count)

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def record_rating(
        self,
        user_id: str,
        item_id: str,
        rating: Any,
        session_id: str | None = None,
    ) -> IngestResult:
        """Validate, store and enqueue a new rating.

        Raises:
            InvalidInteraction: If ids are empty or the rating is out of range
        """
        _check_ids(user_id, item_id)
        value = validate_rating(rating)

        async with self.session_factory() as session:
            event = await InteractionsRepo(session).append(
                user_id, item_id, ActionKind.RATE, value, session_id=session_id
            )

        await self.cache.invalidate_user(user_id)
        await self.cache.push_recent_rating(user_id, item_id, value, event.timestamp.timestamp())
        self.metrics_sink.increment("ratings.recorded")

        update = None
        if self.pipeline is not None:
            update = await self.pipeline.process_new_rating(user_id, item_id, value)

        logger.info(f"Recorded rating {user_id}/{item_id}={value:g}")
        return IngestResult(event=event, update=update)

    async def record_interaction(
        self,
        user_id: str,
        item_id: str,
        action: ActionKind | str,
        value: Any = 1.0,
        session_id: str | None = None,
    ) -> IngestResult:
        """Store a non-rating interaction; ratings go through record_rating.

        Raises:
            InvalidInteraction: If the action, ids or value are invalid
        """
        try:
            kind = ActionKind(action)
        except ValueError as e:
            raise InvalidInteraction(f"Unknown action kind: {action!r}") from e

        if kind == ActionKind.RATE:
            return await self.record_rating(user_id, item_id, value, session_id=session_id)

        _check_ids(user_id, item_id)
        try:
            amount = float(value)
        except (TypeError, ValueError) as e:
            raise InvalidInteraction(f"value must be a number, got {value!r}") from e
        if not math.isfinite(amount) or amount < 0:
            raise InvalidInteraction(f"value must be a finite non-negative number, got {value!r}")

        async with self.session_factory() as session:
            event = await InteractionsRepo(session).append(
                user_id, item_id, kind, amount, session_id=session_id
            )

        await self.cache.invalidate_user(user_id)
        self.metrics_sink.increment(f"interactions.{kind.value}")
        return IngestResult(event=event)

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    def get_metrics(self) -> dict[str, Any]:
        """Request/cache metrics plus model state."""
        data: dict[str, Any] = self.metrics_sink.snapshot()
        data["model"] = self.model.info() if self.model is not None else {"built": False}
        return data

"""Process-wide wiring of the model, pipeline, cache and engine."""

from dataclasses import dataclass

from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hybridrec.config import Config
from hybridrec.core.cache import RecommendationCache, RedisCache, make_redis_client
from hybridrec.core.engine import HybridRecommendationEngine
from hybridrec.learning.pipeline import OnlineLearningPipeline, PipelineSettings
from hybridrec.logging import get_logger
from hybridrec.ml.embedding import EmbeddingModel
from hybridrec.observability.metrics import MetricsSink

logger = get_logger(__name__)


@dataclass
class Runtime:
    """Shared components of one running service."""

    model: EmbeddingModel
    metrics: MetricsSink
    cache: RecommendationCache
    redis: Redis
    pipeline: OnlineLearningPipeline
    engine: HybridRecommendationEngine


_runtime: Runtime | None = None


def create_runtime(
    cfg: Config | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    redis_client: Redis | None = None,
) -> Runtime:
    """Create unconnected components from configuration.

    The model is not built here; see ``prepare_model``. The Redis client
    connects lazily on first use.
    """
    if cfg is None:
        from hybridrec.config import config as cfg

    if session_factory is None:
        from hybridrec.storage.db import get_session_factory
        session_factory = get_session_factory()

    metrics = MetricsSink()
    model = EmbeddingModel(
        learning_rate=cfg.model_learning_rate,
        regularization=cfg.model_regularization,
    )
    if redis_client is None:
        redis_client = make_redis_client(cfg.redis_url)

    cache = RecommendationCache(RedisCache(redis_client), ttl_seconds=cfg.recs_cache_ttl_seconds)
    pipeline = OnlineLearningPipeline(
        model,
        session_factory,
        settings=PipelineSettings.from_config(cfg),
        metrics_sink=metrics,
    )
    engine = HybridRecommendationEngine(
        session_factory,
        model,
        cache,
        pipeline=pipeline,
        metrics_sink=metrics,
        max_candidates=cfg.recs_max_candidates,
        neighbor_count=cfg.recs_neighbor_count,
        profile_max_events=cfg.recs_profile_max_events,
    )
    return Runtime(
        model=model,
        metrics=metrics,
        cache=cache,
        redis=redis_client,
        pipeline=pipeline,
        engine=engine,
    )


def prepare_model(model: EmbeddingModel, cfg: Config) -> None:
    """Load the latest saved model version, or build an empty one."""
    try:
        version = model.load(cfg.model_dir)
        logger.info(f"Using saved model version {version}")
        return
    except FileNotFoundError:
        logger.info(f"No saved model in {cfg.model_dir}, building an empty one")
    except (OSError, KeyError, ValueError) as e:
        logger.error(f"Saved model in {cfg.model_dir} is unreadable, building an empty one: {e}")

    model.build(cfg.model_user_capacity, cfg.model_item_capacity, cfg.model_factors)


def get_runtime() -> Runtime:
    """Get or create the process runtime."""
    global _runtime

    if _runtime is None:
        logger.info("Creating runtime")
        _runtime = create_runtime()

    return _runtime


def set_runtime(runtime: Runtime | None) -> None:
    """Install a runtime (tests) or forget the current one."""
    global _runtime
    _runtime = runtime

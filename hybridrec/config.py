"""Application configuration loaded from environment variables."""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""


def _get_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _get_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class Config:
    """Application configuration."""

    # Service settings
    host: str
    port: int
    database_url: str
    redis_url: str
    admin_token: str | None
    log_level: str

    # Embedding model
    model_dir: str
    model_factors: int
    model_user_capacity: int
    model_item_capacity: int
    model_learning_rate: float
    model_regularization: float
    model_epochs: int
    model_batch_size: int
    model_validation_split: float
    model_training_enabled: bool
    model_training_interval_hours: int

    # Online learning pipeline
    learning_batch_size: int
    learning_base_rate: float
    learning_decay_rate: float
    learning_max_queue_size: int
    learning_interval_seconds: float
    learning_immediate_threshold: float
    learning_batch_timeout_seconds: float

    # Recommendation settings
    recs_cache_ttl_seconds: int
    recs_max_candidates: int
    recs_neighbor_count: int
    recs_profile_max_events: int

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        host = os.getenv("HOST", "0.0.0.0")
        port_str = os.getenv("PORT", "8000")
        try:
            port = int(port_str)
        except ValueError:
            raise ConfigurationError(f"PORT must be an integer, got: {port_str}")

        database_url = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./hybridrec.db")
        admin_token = os.getenv("ADMIN_TOKEN") or None
        log_level = os.getenv("LOG_LEVEL", "INFO").upper()

        model_factors = _get_int("MODEL_FACTORS", 50)
        if model_factors <= 0:
            raise ConfigurationError(f"MODEL_FACTORS must be positive, got: {model_factors}")

        model_validation_split = _get_float("MODEL_VALIDATION_SPLIT", 0.2)
        if not 0.0 <= model_validation_split < 1.0:
            raise ConfigurationError(
                f"MODEL_VALIDATION_SPLIT must be in [0, 1), got: {model_validation_split}"
            )

        learning_decay_rate = _get_float("LEARNING_DECAY_RATE", 0.95)
        if not 0.0 < learning_decay_rate <= 1.0:
            raise ConfigurationError(
                f"LEARNING_DECAY_RATE must be in (0, 1], got: {learning_decay_rate}"
            )

        return cls(
            host=host,
            port=port,
            database_url=database_url,
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
            admin_token=admin_token,
            log_level=log_level,
            model_dir=os.getenv("MODEL_DIR", "./models"),
            model_factors=model_factors,
            model_user_capacity=_get_int("MODEL_USER_CAPACITY", 10000),
            model_item_capacity=_get_int("MODEL_ITEM_CAPACITY", 50000),
            model_learning_rate=_get_float("MODEL_LEARNING_RATE", 0.01),
            model_regularization=_get_float("MODEL_REGULARIZATION", 0.02),
            model_epochs=_get_int("MODEL_EPOCHS", 20),
            model_batch_size=_get_int("MODEL_BATCH_SIZE", 1024),
            model_validation_split=model_validation_split,
            model_training_enabled=_get_bool("MODEL_TRAINING_ENABLED", True),
            model_training_interval_hours=_get_int("MODEL_TRAINING_INTERVAL_HOURS", 24),
            learning_batch_size=_get_int("LEARNING_BATCH_SIZE", 100),
            learning_base_rate=_get_float("LEARNING_BASE_RATE", 0.01),
            learning_decay_rate=learning_decay_rate,
            learning_max_queue_size=_get_int("LEARNING_MAX_QUEUE_SIZE", 10000),
            learning_interval_seconds=_get_float("LEARNING_INTERVAL_SECONDS", 5.0),
            learning_immediate_threshold=_get_float("LEARNING_IMMEDIATE_THRESHOLD", 0.8),
            learning_batch_timeout_seconds=_get_float("LEARNING_BATCH_TIMEOUT_SECONDS", 30.0),
            recs_cache_ttl_seconds=_get_int("RECS_CACHE_TTL_SECONDS", 300),
            recs_max_candidates=_get_int("RECS_MAX_CANDIDATES", 500),
            recs_neighbor_count=_get_int("RECS_NEIGHBOR_COUNT", 20),
            recs_profile_max_events=_get_int("RECS_PROFILE_MAX_EVENTS", 1000),
        )


config = Config.from_env()

"""Online learning pipeline: prioritize new ratings, batch them, train.

New ratings are scored, queued, and folded into the embedding model in
batches. Very high priority ratings additionally get an immediate single
step, so they are applied twice. Training runs in a worker thread and never
blocks recommendation serving.
"""

import asyncio
import math
import threading
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hybridrec.core.contracts import ActionKind
from hybridrec.errors import PreconditionViolation, TrainingInProgress, TransientIngestionFailure
from hybridrec.learning.queue import PendingUpdate, UpdateQueue
from hybridrec.logging import get_logger
from hybridrec.ml.embedding import EmbeddingModel
from hybridrec.observability.metrics import MetricsSink
from hybridrec.storage import EventsRepo, InteractionsRepo, ItemsRepo
from hybridrec.storage.json_utils import safe_json_loads

logger = get_logger(__name__)

ACTIVITY_WINDOW = 100
DEFAULT_USER_AVERAGE = 5.0
DEFAULT_ITEM_POPULARITY = 0.5
VOTE_COUNT_LOG_BASE = 10000
HIGH_PRIORITY = 0.7
TRAINING_MINI_BATCH = 32
BATCH_EVENT = "learning_batch_processed"


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def item_popularity(vote_count: int | None) -> float:
    """Log-scaled popularity of an item; 0.5 when unknown."""
    if vote_count is None:
        return DEFAULT_ITEM_POPULARITY
    return _clamp01(math.log(max(vote_count, 0) + 1) / math.log(VOTE_COUNT_LOG_BASE))


def compute_priority(
    activity: float,
    deviation: float,
    popularity: float,
    recency: float = 1.0,
) -> float:
    """Priority of a pending update in [0, 1].

    Each term is clamped to [0, 1] before weighting.

    Args:
        activity: Recent actions / 100
        deviation: |rating - user average| / 5
        popularity: Item popularity
        recency: 1 for fresh ratings
    """
    return _clamp01(
        0.3 * _clamp01(activity)
        + 0.3 * _clamp01(deviation)
        + 0.2 * _clamp01(popularity)
        + 0.2 * _clamp01(recency)
    )


@dataclass(frozen=True)
class PipelineSettings:
    batch_size: int = 100
    base_learning_rate: float = 0.01
    decay_rate: float = 0.95
    max_queue_size: int = 10000
    immediate_threshold: float = 0.8
    batch_timeout_seconds: float = 30.0

    @classmethod
    def from_config(cls, config: Any) -> "PipelineSettings":
        return cls(
            batch_size=config.learning_batch_size,
            base_learning_rate=config.learning_base_rate,
            decay_rate=config.learning_decay_rate,
            max_queue_size=config.learning_max_queue_size,
            immediate_threshold=config.learning_immediate_threshold,
            batch_timeout_seconds=config.learning_batch_timeout_seconds,
        )


@dataclass
class LearningMetrics:
    total_updates: int = 0
    batch_updates: int = 0
    incremental_updates: int = 0
    rejected_incremental: int = 0
    failed_batches: int = 0
    dropped_updates: int = 0
    evicted_updates: int = 0
    average_loss: float = 0.0
    last_update_time: datetime | None = None
    processing_time_seconds: float = 0.0
    queue_size: int = 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["last_update_time"] = (
            self.last_update_time.isoformat() if self.last_update_time else None
        )
        return data


@dataclass(frozen=True)
class QueueStatus:
    queue_size: int
    processing: bool
    high_priority_count: int
    oldest_update_age_seconds: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class BatchResult:
    size: int
    success: bool
    learning_rate: float
    duration_seconds: float
    loss: float | None = None
    error: str | None = None


class OnlineLearningPipeline:
    """Feeds new ratings into the embedding model by priority."""

    def __init__(
        self,
        model: EmbeddingModel,
        session_factory: async_sessionmaker[AsyncSession],
        settings: PipelineSettings | None = None,
        metrics_sink: MetricsSink | None = None,
    ) -> None:
        self.model = model
        self.session_factory = session_factory
        self.settings = settings or PipelineSettings()
        self.metrics_sink = metrics_sink or MetricsSink()
        self.queue = UpdateQueue(self.settings.max_queue_size)
        self._metrics = LearningMetrics()
        self._processing = False
        self._tasks: set[asyncio.Task] = set()

    @property
    def is_processing(self) -> bool:
        return self._processing

    def current_learning_rate(self) -> float:
        """Base rate decayed by the number of processed batches."""
        s = self.settings
        return s.base_learning_rate * s.decay_rate ** self._metrics.batch_updates

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def priority_for(self, user_id: str, item_id: str, rating: float) -> float:
        """Compute the priority of a new rating from stored history.

        Falls back to 0.5 when history cannot be read.
        """
        try:
            async with self.session_factory() as session:
                recent = await InteractionsRepo(session).list_user_events(
                    user_id, limit=ACTIVITY_WINDOW
                )
                item = await ItemsRepo(session).get_item(item_id)
        except SQLAlchemyError as e:
            logger.warning(f"Priority inputs unavailable for {user_id}/{item_id}: {e}")
            return 0.5

        ratings = [ev.value for ev in recent if ev.action == ActionKind.RATE]
        user_average = sum(ratings) / len(ratings) if ratings else DEFAULT_USER_AVERAGE

        return compute_priority(
            activity=len(recent) / ACTIVITY_WINDOW,
            deviation=abs(rating - user_average) / 5,
            popularity=item_popularity(item.vote_count if item else None),
        )

    async def process_new_rating(self, user_id: str, item_id: str, rating: float) -> PendingUpdate:
        """Queue a new rating for training.

        Ratings above the immediate threshold also get one gradient step
        right away. A full queue triggers a batch in the background.

        Returns:
            The queued update
        """
        priority = await self.priority_for(user_id, item_id, rating)
        update = PendingUpdate(user_id=user_id, item_id=item_id, rating=rating, priority=priority)

        evicted = self.queue.push(update)
        if evicted is not None:
            self._metrics.evicted_updates += 1
            self.metrics_sink.increment("learning.evicted_updates")
        self.metrics_sink.gauge("learning.queue_size", len(self.queue))

        if priority > self.settings.immediate_threshold:
            await self._apply_immediately(update)

        if len(self.queue) >= self.settings.batch_size and not self._processing:
            self._spawn(self.process_batch())

        logger.debug(f"Queued rating {user_id}/{item_id}={rating} priority={priority:.3f}")
        return update

    async def _apply_immediately(self, update: PendingUpdate) -> None:
        try:
            await asyncio.to_thread(
                self.model.incremental_train,
                update.user_id,
                update.item_id,
                update.rating,
                self.current_learning_rate(),
            )
        except TrainingInProgress:
            self._metrics.rejected_incremental += 1
            self.metrics_sink.increment("learning.rejected_incremental")
            logger.info(
                f"Immediate update for {update.user_id}/{update.item_id} rejected: "
                f"training in progress, queued copy will still train"
            )
            return
        except PreconditionViolation as e:
            logger.warning(f"Immediate update skipped: {e}")
            return

        self._metrics.incremental_updates += 1
        self.metrics_sink.increment("learning.incremental_updates")

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Background learning batch crashed: {exc!r}", exc_info=exc)

    async def wait_for_background(self) -> None:
        """Wait until background batches started by ingestion finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    async def process_batch(self) -> BatchResult | None:
        """Train on up to batch_size highest-priority updates.

        Returns None when the queue is empty or a batch is already running.
        A failed batch is logged and its updates are dropped.
        """
        if self._processing or len(self.queue) == 0:
            return None

        self._processing = True
        try:
            batch = self.queue.pop_batch(self.settings.batch_size)
            if not batch:
                return None
            self.metrics_sink.gauge("learning.queue_size", len(self.queue))

            rate = self.current_learning_rate()
            started = time.monotonic()
            try:
                loss = await self._train_batch(batch, rate)
            except TransientIngestionFailure as e:
                duration = time.monotonic() - started
                self._metrics.failed_batches += 1
                self._metrics.dropped_updates += len(batch)
                self.metrics_sink.increment("learning.failed_batches")
                self.metrics_sink.increment("learning.dropped_updates", len(batch))
                logger.error(f"Learning batch of {len(batch)} failed, updates dropped: {e}")
                return BatchResult(
                    size=len(batch),
                    success=False,
                    learning_rate=rate,
                    duration_seconds=duration,
                    error=str(e),
                )

            duration = time.monotonic() - started
            for update in batch:
                update.processed = True

            m = self._metrics
            if loss is not None:
                m.average_loss = (m.average_loss * m.batch_updates + loss) / (m.batch_updates + 1)
            m.batch_updates += 1
            m.total_updates += len(batch)
            m.last_update_time = datetime.now(timezone.utc)
            m.processing_time_seconds = duration

            self.metrics_sink.increment("learning.batches")
            self.metrics_sink.increment("learning.updates", len(batch))
            self.metrics_sink.timing("learning.batch_seconds", duration)

            await self._record_batch(batch, duration, rate, loss)
            return BatchResult(
                size=len(batch),
                success=True,
                learning_rate=rate,
                duration_seconds=duration,
                loss=loss,
            )
        finally:
            self._processing = False

    async def _train_batch(self, batch: list[PendingUpdate], rate: float) -> float | None:
        samples = [(u.user_id, u.item_id, u.rating) for u in batch]
        cancel = threading.Event()
        worker = asyncio.ensure_future(
            asyncio.to_thread(
                self.model.batch_train,
                samples,
                epochs=1,
                batch_size=min(TRAINING_MINI_BATCH, len(samples)),
                validation_split=0.0,
                learning_rate=rate,
                cancel=cancel,
            )
        )
        try:
            history = await asyncio.wait_for(
                asyncio.shield(worker), timeout=self.settings.batch_timeout_seconds
            )
        except asyncio.TimeoutError as e:
            cancel.set()
            # the thread holds the model lock until its next cancel check
            await self._drain(worker)
            raise TransientIngestionFailure(
                f"batch training exceeded {self.settings.batch_timeout_seconds}s"
            ) from e
        except asyncio.CancelledError:
            cancel.set()
            raise
        except Exception as e:
            raise TransientIngestionFailure(f"{type(e).__name__}: {e}") from e

        if history.cancelled:
            raise TransientIngestionFailure("batch training was cancelled")
        return history.final_loss

    @staticmethod
    async def _drain(worker: asyncio.Future) -> None:
        await asyncio.wait([worker])
        if not worker.cancelled() and worker.exception() is not None:
            logger.warning(f"Cancelled batch training ended with an error: {worker.exception()!r}")

    async def _record_batch(
        self,
        batch: list[PendingUpdate],
        duration: float,
        rate: float,
        loss: float | None,
    ) -> None:
        payload = {
            "size": len(batch),
            "duration_seconds": round(duration, 4),
            "average_priority": round(sum(u.priority for u in batch) / len(batch), 4),
            "user_count": len({u.user_id for u in batch}),
            "item_count": len({u.item_id for u in batch}),
            "learning_rate": rate,
            "loss": loss,
        }
        logger.info("Processed learning batch", extra={"context": payload})

        try:
            async with self.session_factory() as session:
                await EventsRepo(session).log_event(BATCH_EVENT, payload=payload)
        except SQLAlchemyError as e:
            logger.warning(f"Failed to record learning batch event: {e}")

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    async def force_flush(self) -> BatchResult | None:
        """Process one batch now. No-op when empty or already processing."""
        if self._processing:
            logger.info("Force flush skipped: batch already in progress")
            return None
        return await self.process_batch()

    async def clear(self) -> int:
        """Drop all queued updates. An in-flight batch is left alone."""
        dropped = self.queue.clear()
        self.metrics_sink.gauge("learning.queue_size", 0)
        if dropped:
            logger.info(f"Cleared {dropped} pending updates")
        return dropped

    async def recent_batches(self, limit: int = 10) -> list[dict[str, Any]]:
        """Summaries of the latest processed batches, newest first."""
        async with self.session_factory() as session:
            events = await EventsRepo(session).list_events(BATCH_EVENT, limit=limit)
        return [
            {**safe_json_loads(e.payload_json), "created_at": e.created_at.isoformat()}
            for e in events
        ]

    def get_metrics(self) -> LearningMetrics:
        self._metrics.queue_size = len(self.queue)
        return LearningMetrics(**asdict(self._metrics))

    def get_queue_status(self) -> QueueStatus:
        oldest = self.queue.oldest_timestamp()
        age = (datetime.now(timezone.utc) - oldest).total_seconds() if oldest else 0.0
        return QueueStatus(
            queue_size=len(self.queue),
            processing=self._processing,
            high_priority_count=self.queue.count_above(HIGH_PRIORITY),
            oldest_update_age_seconds=max(age, 0.0),
        )

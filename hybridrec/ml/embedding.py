"""Low-rank embedding model for (user, item) -> rating prediction.

Prediction: r_ui = mu + b_u + b_i + p_u . q_i

Parameters live in fixed-capacity matrices allocated by ``build``. External
ids are mapped to rows the first time they appear in a training split,
and only when both the user and the item fit within capacity. Every
training call works on a private copy of the parameters and publishes it as
an immutable ``ModelSnapshot``; readers only ever see whole snapshots.
"""

import math
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Sequence

import numpy as np

from hybridrec.core.contracts import MAX_RATING, MIN_RATING
from hybridrec.errors import NoCoverage, PreconditionViolation, TrainingInProgress
from hybridrec.logging import get_logger

logger = get_logger(__name__)

DEFAULT_FACTORS = 50

Sample = tuple[str, str, float]


@dataclass(frozen=True)
class Prediction:
    """Raw predicted rating for one item. Uncovered items carry no rating."""

    item_id: str
    rating: float | None
    covered: bool


@dataclass
class TrainingHistory:
    """Per-epoch losses of one training run."""

    loss: list[float] = field(default_factory=list)
    val_loss: list[float] = field(default_factory=list)
    samples: int = 0
    skipped: int = 0
    validation_uncovered: int = 0
    cancelled: bool = False
    published: bool = False
    duration_seconds: float = 0.0

    @property
    def final_loss(self) -> float | None:
        return self.loss[-1] if self.loss else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "loss": self.loss,
            "val_loss": self.val_loss,
            "samples": self.samples,
            "skipped": self.skipped,
            "validation_uncovered": self.validation_uncovered,
            "cancelled": self.cancelled,
            "published": self.published,
            "duration_seconds": round(self.duration_seconds, 4),
        }


def _readonly(array: np.ndarray) -> np.ndarray:
    array.setflags(write=False)
    return array


@dataclass(frozen=True)
class ModelSnapshot:
    """Immutable, published state of the model."""

    user_index: Mapping[str, int]
    item_index: Mapping[str, int]
    user_factors: np.ndarray
    item_factors: np.ndarray
    user_bias: np.ndarray
    item_bias: np.ndarray
    global_bias: float
    rating_sum: float
    rating_count: int
    version: int = 0

    @property
    def factors(self) -> int:
        return int(self.user_factors.shape[1])

    @property
    def user_capacity(self) -> int:
        return int(self.user_factors.shape[0])

    @property
    def item_capacity(self) -> int:
        return int(self.item_factors.shape[0])

    def has_user(self, user_id: str) -> bool:
        return user_id in self.user_index

    def has_item(self, item_id: str) -> bool:
        return item_id in self.item_index

    def predict(self, user_id: str, item_ids: Sequence[str]) -> list[Prediction]:
        """Predict raw ratings for one user over many items.

        Args:
            user_id: User ID
            item_ids: Item IDs in the order predictions are wanted

        Returns:
            One Prediction per item; items without parameters are uncovered

        Raises:
            NoCoverage: If the user has no parameters at all
        """
        u = self.user_index.get(user_id)
        if u is None:
            raise NoCoverage(user_id, list(item_ids))

        rows = [self.item_index.get(item_id) for item_id in item_ids]
        known = [row for row in rows if row is not None]

        values: np.ndarray
        if known:
            idx = np.asarray(known, dtype=np.int64)
            values = (
                self.global_bias
                + self.user_bias[u]
                + self.item_bias[idx]
                + self.item_factors[idx] @ self.user_factors[u]
            )
        else:
            values = np.empty(0)

        predictions = []
        pos = 0
        for item_id, row in zip(item_ids, rows):
            if row is None:
                predictions.append(Prediction(item_id=item_id, rating=None, covered=False))
            else:
                predictions.append(
                    Prediction(item_id=item_id, rating=float(values[pos]), covered=True)
                )
                pos += 1
        return predictions

    def thaw(self) -> "_WorkingParams":
        return _WorkingParams(
            user_index=dict(self.user_index),
            item_index=dict(self.item_index),
            user_factors=self.user_factors.copy(),
            item_factors=self.item_factors.copy(),
            user_bias=self.user_bias.copy(),
            item_bias=self.item_bias.copy(),
            rating_sum=self.rating_sum,
            rating_count=self.rating_count,
        )


@dataclass
class _WorkingParams:
    """Private mutable copy of the parameters used during one training call."""

    user_index: dict[str, int]
    item_index: dict[str, int]
    user_factors: np.ndarray
    item_factors: np.ndarray
    user_bias: np.ndarray
    item_bias: np.ndarray
    rating_sum: float
    rating_count: int

    @property
    def global_bias(self) -> float:
        if self.rating_count == 0:
            return (MIN_RATING + MAX_RATING) / 2
        return self.rating_sum / self.rating_count

    def rows_for(
        self,
        user_id: str,
        item_id: str,
        user_capacity: int,
        item_capacity: int,
    ) -> tuple[int, int] | None:
        """Rows of a pair, allocating new ones only if both fit."""
        u = self.user_index.get(user_id)
        i = self.item_index.get(item_id)
        if u is None and len(self.user_index) >= user_capacity:
            return None
        if i is None and len(self.item_index) >= item_capacity:
            return None
        if u is None:
            u = self.user_index[user_id] = len(self.user_index)
        if i is None:
            i = self.item_index[item_id] = len(self.item_index)
        return u, i

    def freeze(self, version: int) -> ModelSnapshot:
        return ModelSnapshot(
            user_index=MappingProxyType(self.user_index),
            item_index=MappingProxyType(self.item_index),
            user_factors=_readonly(self.user_factors),
            item_factors=_readonly(self.item_factors),
            user_bias=_readonly(self.user_bias),
            item_bias=_readonly(self.item_bias),
            global_bias=self.global_bias,
            rating_sum=self.rating_sum,
            rating_count=self.rating_count,
            version=version,
        )


def _squared_errors(
    params: _WorkingParams,
    users: np.ndarray,
    items: np.ndarray,
    ratings: np.ndarray,
) -> np.ndarray:
    preds = (
        params.global_bias
        + params.user_bias[users]
        + params.item_bias[items]
        + np.sum(params.user_factors[users] * params.item_factors[items], axis=1)
    )
    return (ratings - preds) ** 2


class EmbeddingModel:
    """Trainable matrix factorization model with snapshot publication.

    Training is single-writer: a second concurrent training call raises
    TrainingInProgress instead of waiting. Reads never take the lock.
    """

    def __init__(
        self,
        learning_rate: float = 0.01,
        regularization: float = 0.02,
        seed: int | None = None,
    ) -> None:
        self.learning_rate = learning_rate
        self.regularization = regularization
        self._rng = np.random.default_rng(seed)
        self._snapshot: ModelSnapshot | None = None
        self._train_lock = threading.Lock()
        self._training = False
        self._training_runs = 0
        self._incremental_steps = 0
        self._skipped_total = 0
        self._last_trained_at: float | None = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def is_built(self) -> bool:
        return self._snapshot is not None

    @property
    def is_training(self) -> bool:
        return self._training

    def snapshot(self) -> ModelSnapshot:
        """Get the last published snapshot.

        Raises:
            PreconditionViolation: If the model was never built
        """
        snap = self._snapshot
        if snap is None:
            raise PreconditionViolation("Model not built. Call build() first.")
        return snap

    def build(self, user_count: int, item_count: int, factors: int = DEFAULT_FACTORS) -> None:
        """Allocate parameters, discarding any previous state.

        Args:
            user_count: User capacity
            item_count: Item capacity
            factors: Embedding dimensionality, fixed until the next build
        """
        if user_count <= 0 or item_count <= 0 or factors <= 0:
            raise ValueError(
                f"Invalid model shape: users={user_count} items={item_count} factors={factors}"
            )

        with self._exclusive():
            scale = 0.1 / math.sqrt(factors)
            params = _WorkingParams(
                user_index={},
                item_index={},
                user_factors=self._rng.normal(0.0, scale, (user_count, factors)),
                item_factors=self._rng.normal(0.0, scale, (item_count, factors)),
                user_bias=np.zeros(user_count),
                item_bias=np.zeros(item_count),
                rating_sum=0.0,
                rating_count=0,
            )
            self._snapshot = params.freeze(version=0)
            self._training_runs = 0
            self._incremental_steps = 0
            self._skipped_total = 0
            self._last_trained_at = None

        logger.info(f"Built embedding model: users={user_count}, items={item_count}, factors={factors}")

    def restore(self, snapshot: ModelSnapshot) -> None:
        """Replace the published state with a loaded snapshot."""
        with self._exclusive():
            self._snapshot = snapshot
        logger.info(
            f"Restored embedding model v{snapshot.version}: "
            f"{len(snapshot.user_index)} users, {len(snapshot.item_index)} items"
        )

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def batch_train(
        self,
        samples: Sequence[Sample],
        epochs: int = 20,
        batch_size: int = 1024,
        validation_split: float = 0.2,
        learning_rate: float | None = None,
        cancel: threading.Event | None = None,
    ) -> TrainingHistory:
        """Train with mini-batch gradient descent on squared error.

        Args:
            samples: (user_id, item_id, rating) triples
            epochs: Passes over the training split
            batch_size: Samples per gradient step
            validation_split: Fraction of samples held out for val_loss
            learning_rate: Step size, defaults to the model's rate
            cancel: When set, training stops at the next mini-batch and
                nothing is published

        Returns:
            TrainingHistory with per-epoch train and validation loss

        Raises:
            PreconditionViolation: If the model was never built
            TrainingInProgress: If another training call is running
        """
        if epochs < 1 or batch_size < 1:
            raise ValueError("epochs and batch_size must be positive")
        if not 0.0 <= validation_split < 1.0:
            raise ValueError("validation_split must be in [0, 1)")

        lr = self.learning_rate if learning_rate is None else learning_rate
        history = TrainingHistory()
        started = time.monotonic()

        finite = [s for s in samples if math.isfinite(float(s[2]))]
        invalid = len(samples) - len(finite)

        with self._exclusive():
            base = self.snapshot()
            params = base.thaw()

            order = self._rng.permutation(len(finite))
            n_val = int(len(finite) * validation_split)
            if len(finite) - n_val < 1:
                n_val = 0
            train_samples = [finite[k] for k in np.sort(order[n_val:])]
            val_samples = [finite[k] for k in np.sort(order[:n_val])]

            # only training samples allocate rows; every allocated row gets a gradient
            users, items, ratings, skipped = self._index_samples(params, base, train_samples)
            val_users, val_items, val_ratings = self._lookup_samples(params, val_samples)
            history.skipped = invalid + skipped
            history.validation_uncovered = len(val_samples) - len(val_ratings)
            history.samples = len(ratings) + len(val_ratings)
            if invalid:
                self._skipped_total += invalid
                logger.warning(f"Skipped {invalid} samples with non-finite ratings")

            if len(ratings) == 0:
                history.duration_seconds = time.monotonic() - started
                return history

            params.rating_sum += float(ratings.sum())
            params.rating_count += len(ratings)
            train_idx = np.arange(len(ratings))

            for epoch in range(epochs):
                shuffled = self._rng.permutation(train_idx)
                for start in range(0, len(shuffled), batch_size):
                    if cancel is not None and cancel.is_set():
                        history.cancelled = True
                        history.duration_seconds = time.monotonic() - started
                        logger.warning(
                            f"Training cancelled at epoch {epoch + 1}; nothing published"
                        )
                        return history
                    batch = shuffled[start:start + batch_size]
                    self._gradient_step(params, users[batch], items[batch], ratings[batch], lr)

                history.loss.append(
                    float(np.mean(_squared_errors(params, users, items, ratings)))
                )
                if len(val_ratings):
                    history.val_loss.append(
                        float(np.mean(_squared_errors(params, val_users, val_items, val_ratings)))
                    )

            if cancel is not None and cancel.is_set():
                history.cancelled = True
                history.duration_seconds = time.monotonic() - started
                logger.warning("Training cancelled before publish; nothing published")
                return history

            self._publish(params, base)
            self._training_runs += 1
            history.published = True

        history.duration_seconds = time.monotonic() - started
        logger.info(
            f"Batch training done: samples={history.samples}, skipped={history.skipped}, "
            f"epochs={epochs}, loss={history.final_loss:.4f}, "
            f"duration={history.duration_seconds:.2f}s"
        )
        return history

    def incremental_train(
        self,
        user_id: str,
        item_id: str,
        rating: float,
        learning_rate: float | None = None,
    ) -> float | None:
        """Apply one gradient step for a single rating.

        Returns:
            Squared error before the step, or None if the ids did not fit
            within capacity

        Raises:
            PreconditionViolation: If the model was never built
            TrainingInProgress: If another training call is running
        """
        lr = self.learning_rate if learning_rate is None else learning_rate

        with self._exclusive():
            base = self.snapshot()
            params = base.thaw()

            users, items, ratings, skipped = self._index_samples(
                params, base, [(user_id, item_id, rating)]
            )
            if skipped:
                return None

            params.rating_sum += float(rating)
            params.rating_count += 1

            before = float(_squared_errors(params, users, items, ratings)[0])
            self._gradient_step(params, users, items, ratings, lr)
            self._publish(params, base)
            self._incremental_steps += 1

        logger.debug(f"Incremental step user={user_id} item={item_id} err2={before:.4f}")
        return before

    def _exclusive(self) -> "_TrainingGuard":
        return _TrainingGuard(self)

    def _index_samples(
        self,
        params: _WorkingParams,
        base: ModelSnapshot,
        samples: Sequence[Sample],
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray, int]:
        users: list[int] = []
        items: list[int] = []
        ratings: list[float] = []
        skipped = 0

        for user_id, item_id, rating in samples:
            value = float(rating)
            if not math.isfinite(value):
                skipped += 1
                continue
            rows = params.rows_for(user_id, item_id, base.user_capacity, base.item_capacity)
            if rows is None:
                skipped += 1
                continue
            users.append(rows[0])
            items.append(rows[1])
            ratings.append(value)

        if skipped:
            self._skipped_total += skipped
            logger.warning(
                f"Skipped {skipped} samples beyond model capacity "
                f"(users={base.user_capacity}, items={base.item_capacity}) or with invalid ratings"
            )

        return (
            np.asarray(users, dtype=np.int64),
            np.asarray(items, dtype=np.int64),
            np.asarray(ratings, dtype=np.float64),
            skipped,
        )

    @staticmethod
    def _lookup_samples(
        params: _WorkingParams,
        samples: Sequence[Sample],
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Rows of samples whose user and item are both known; others are dropped."""
        users: list[int] = []
        items: list[int] = []
        ratings: list[float] = []
        for user_id, item_id, rating in samples:
            u = params.user_index.get(user_id)
            i = params.item_index.get(item_id)
            if u is None or i is None:
                continue
            users.append(u)
            items.append(i)
            ratings.append(float(rating))
        return (
            np.asarray(users, dtype=np.int64),
            np.asarray(items, dtype=np.int64),
            np.asarray(ratings, dtype=np.float64),
        )

    def _gradient_step(
        self,
        params: _WorkingParams,
        users: np.ndarray,
        items: np.ndarray,
        ratings: np.ndarray,
        lr: float,
    ) -> None:
        reg = self.regularization
        pu = params.user_factors[users]
        qi = params.item_factors[items]
        err = ratings - (
            params.global_bias
            + params.user_bias[users]
            + params.item_bias[items]
            + np.sum(pu * qi, axis=1)
        )

        # Average the gradient per row so heavy users do not take giant steps
        user_counts = np.bincount(users, minlength=len(params.user_bias))[users]
        item_counts = np.bincount(items, minlength=len(params.item_bias))[items]
        u_scale = (lr / user_counts)[:, None]
        i_scale = (lr / item_counts)[:, None]

        np.add.at(params.user_factors, users, u_scale * (err[:, None] * qi - reg * pu))
        np.add.at(params.item_factors, items, i_scale * (err[:, None] * pu - reg * qi))
        np.add.at(params.user_bias, users, lr * err / user_counts)
        np.add.at(params.item_bias, items, lr * err / item_counts)

    def _publish(self, params: _WorkingParams, base: ModelSnapshot) -> None:
        self._snapshot = params.freeze(version=base.version + 1)
        self._last_trained_at = time.time()

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    def predict(self, user_id: str, item_ids: Sequence[str]) -> list[Prediction]:
        """Predict raw ratings from the current snapshot.

        Raises:
            PreconditionViolation: If the model was never built
            NoCoverage: If the user has no parameters
        """
        return self.snapshot().predict(user_id, item_ids)

    def evaluate(self, samples: Sequence[Sample]) -> dict[str, float | int]:
        """Compute loss (MSE), MAE and RMSE over covered samples.

        Returns:
            Dict with loss, mae, rmse, count and uncovered
        """
        snap = self.snapshot()
        errors: list[float] = []
        uncovered = 0

        for user_id, item_id, rating in samples:
            if not (snap.has_user(user_id) and snap.has_item(item_id)):
                uncovered += 1
                continue
            predicted = snap.predict(user_id, [item_id])[0].rating
            errors.append(float(rating) - predicted)

        if not errors:
            return {"loss": 0.0, "mae": 0.0, "rmse": 0.0, "count": 0, "uncovered": uncovered}

        arr = np.asarray(errors)
        mse = float(np.mean(arr ** 2))
        return {
            "loss": mse,
            "mae": float(np.mean(np.abs(arr))),
            "rmse": math.sqrt(mse),
            "count": len(errors),
            "uncovered": uncovered,
        }

    def info(self) -> dict[str, Any]:
        """Describe model state for admin endpoints and logs."""
        snap = self._snapshot
        data: dict[str, Any] = {
            "built": snap is not None,
            "training": self._training,
            "learning_rate": self.learning_rate,
            "regularization": self.regularization,
            "training_runs": self._training_runs,
            "incremental_steps": self._incremental_steps,
            "skipped_samples": self._skipped_total,
            "last_trained_at": self._last_trained_at,
        }
        if snap is not None:
            data.update({
                "version": snap.version,
                "factors": snap.factors,
                "user_capacity": snap.user_capacity,
                "item_capacity": snap.item_capacity,
                "known_users": len(snap.user_index),
                "known_items": len(snap.item_index),
                "global_bias": round(snap.global_bias, 4),
            })
        return data

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, directory: str | Path, version: str | None = None) -> str:
        """Save the current snapshot as a new artifact version."""
        from hybridrec.ml.artifacts import save_snapshot

        return save_snapshot(self.snapshot(), directory, version=version, info=self.info())

    def load(self, directory: str | Path, version: str | None = None) -> str:
        """Load an artifact version (latest when omitted) and publish it.

        Raises:
            FileNotFoundError: If no such version exists
        """
        from hybridrec.ml.artifacts import load_snapshot

        snapshot, loaded_version = load_snapshot(directory, version=version)
        self.restore(snapshot)
        return loaded_version


class _TrainingGuard:
    """Non-blocking acquisition of the model's single-writer lock."""

    def __init__(self, model: EmbeddingModel) -> None:
        self.model = model

    def __enter__(self) -> None:
        if not self.model._train_lock.acquire(blocking=False):
            raise TrainingInProgress("Model is already training")
        self.model._training = True

    def __exit__(self, *exc_info: Any) -> None:
        self.model._training = False
        self.model._train_lock.release()

"""Error taxonomy for the recommendation and learning engine."""


class HybridRecError(Exception):
    """Base class for engine errors."""


class PreconditionViolation(HybridRecError):
    """A model operation was called before the model was built."""


class NoCoverage(HybridRecError):
    """The embedding model has no parameters for the requested user or items."""

    def __init__(self, user_id: str, item_ids: list[str] | None = None) -> None:
        self.user_id = user_id
        self.item_ids = item_ids or []
        detail = f"user={user_id}"
        if self.item_ids:
            detail += f" items={len(self.item_ids)}"
        super().__init__(f"No model coverage for {detail}")


class TrainingInProgress(HybridRecError):
    """Another gradient session currently owns the model. Callers may retry."""


class TransientIngestionFailure(HybridRecError):
    """A training batch failed; its pending updates were dropped."""


class InvalidInteraction(HybridRecError):
    """A malformed interaction was rejected at the ingestion boundary."""

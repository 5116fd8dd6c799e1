"""Priority queue of pending model updates."""

import heapq
import itertools
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone

from hybridrec.logging import get_logger

logger = get_logger(__name__)


@dataclass
class PendingUpdate:
    """A new rating waiting to be folded into the embedding model."""

    user_id: str
    item_id: str
    rating: float
    priority: float
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    sequence: int = -1
    processed: bool = False


class UpdateQueue:
    """Bounded max-priority queue; equal priorities leave in arrival order.

    On overflow the lowest-priority entry is evicted, the latest arrival
    among equals. All operations hold an internal lock.
    """

    def __init__(self, max_size: int = 10000) -> None:
        if max_size < 1:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self._heap: list[tuple[float, int, PendingUpdate]] = []
        self._counter = itertools.count()
        self._lock = threading.Lock()
        self.evicted = 0

    def push(self, update: PendingUpdate) -> PendingUpdate | None:
        """Add an update.

        Args:
            update: Update to enqueue; its sequence number is assigned here

        Returns:
            The evicted update when the queue overflowed, else None
        """
        with self._lock:
            update.sequence = next(self._counter)
            heapq.heappush(self._heap, (-update.priority, update.sequence, update))

            if len(self._heap) <= self.max_size:
                return None

            # Largest key = lowest priority, latest arrival among equals
            victim_pos = max(range(len(self._heap)), key=lambda i: self._heap[i][:2])
            victim = self._heap[victim_pos][2]
            self._heap[victim_pos] = self._heap[-1]
            self._heap.pop()
            heapq.heapify(self._heap)
            self.evicted += 1

        logger.warning(
            f"Update queue full ({self.max_size}), evicted {victim.user_id}/{victim.item_id} "
            f"priority={victim.priority:.3f}"
        )
        return victim

    def pop_batch(self, size: int) -> list[PendingUpdate]:
        """Remove and return up to ``size`` highest-priority updates."""
        with self._lock:
            count = min(size, len(self._heap))
            return [heapq.heappop(self._heap)[2] for _ in range(count)]

    def clear(self) -> int:
        """Drop every queued update. Returns how many were dropped."""
        with self._lock:
            dropped = len(self._heap)
            self._heap.clear()
        return dropped

    def count_above(self, threshold: float) -> int:
        with self._lock:
            return sum(1 for neg_priority, _, _ in self._heap if -neg_priority > threshold)

    def oldest_timestamp(self) -> datetime | None:
        with self._lock:
            if not self._heap:
                return None
            return min(entry[2].timestamp for entry in self._heap)

    def __len__(self) -> int:
        with self._lock:
            return len(self._heap)

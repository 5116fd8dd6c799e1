"""Tests for the pending update queue."""

from datetime import datetime, timedelta, timezone

import pytest

from hybridrec.learning.queue import PendingUpdate, UpdateQueue


def _update(item_id, priority, at=None):
    update = PendingUpdate(user_id="u1", item_id=item_id, rating=7.0, priority=priority)
    if at is not None:
        update.timestamp = at
    return update


def test_pops_by_priority_then_arrival():
    queue = UpdateQueue(max_size=10)
    for item_id, priority in [("a", 0.2), ("b", 0.9), ("c", 0.5), ("d", 0.9)]:
        queue.push(_update(item_id, priority))

    batch = queue.pop_batch(10)
    assert [u.item_id for u in batch] == ["b", "d", "c", "a"]
    assert len(queue) == 0


def test_pop_batch_takes_at_most_size():
    queue = UpdateQueue()
    for i in range(5):
        queue.push(_update(f"m{i}", i / 10))

    assert len(queue.pop_batch(2)) == 2
    assert len(queue) == 3
    assert queue.pop_batch(0) == []


def test_overflow_evicts_lowest_latest():
    queue = UpdateQueue(max_size=3)
    assert queue.push(_update("a", 0.5)) is None
    assert queue.push(_update("b", 0.1)) is None
    assert queue.push(_update("c", 0.1)) is None

    evicted = queue.push(_update("d", 0.7))

    assert evicted.item_id == "c"
    assert queue.evicted == 1
    assert len(queue) == 3
    assert [u.item_id for u in queue.pop_batch(3)] == ["d", "a", "b"]


def test_overflow_can_evict_the_newcomer():
    queue = UpdateQueue(max_size=2)
    queue.push(_update("a", 0.5))
    queue.push(_update("b", 0.6))

    evicted = queue.push(_update("c", 0.1))

    assert evicted.item_id == "c"
    assert [u.item_id for u in queue.pop_batch(2)] == ["b", "a"]


def test_clear_is_idempotent():
    queue = UpdateQueue()
    queue.push(_update("a", 0.5))
    queue.push(_update("b", 0.5))

    assert queue.clear() == 2
    assert queue.clear() == 0
    assert len(queue) == 0


def test_status_helpers():
    now = datetime.now(timezone.utc)
    queue = UpdateQueue()
    assert queue.oldest_timestamp() is None

    queue.push(_update("a", 0.9, at=now))
    queue.push(_update("b", 0.3, at=now - timedelta(minutes=5)))
    queue.push(_update("c", 0.75, at=now))

    assert queue.count_above(0.7) == 2
    assert queue.oldest_timestamp() == now - timedelta(minutes=5)


def test_rejects_non_positive_size():
    with pytest.raises(ValueError):
        UpdateQueue(max_size=0)

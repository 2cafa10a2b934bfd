"""Intake buffer between the subscription feed and the batch scheduler."""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from mempool_sentiment.ingestor.models import TransactionRef

if TYPE_CHECKING:
    from mempool_sentiment.stats import AggregateStatistics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DrainedBatch:
    """Refs removed from the buffer together with the stats generation they belong to."""

    refs: tuple[TransactionRef, ...]
    generation: int

    def __len__(self) -> int:
        return len(self.refs)


class IntakeBuffer:
    """Unbounded FIFO of pending transaction refs.

    Appending also counts the refs as observed, under the same lock, so
    total_observed never lags behind what the scheduler can drain.
    """

    def __init__(self, stats: AggregateStatistics) -> None:
        self._stats = stats
        self._lock = threading.Lock()
        self._items: deque[TransactionRef] = deque()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    @property
    def is_empty(self) -> bool:
        return len(self) == 0

    def append(self, refs: Sequence[TransactionRef]) -> int:
        """Append refs to the tail in arrival order.

        Returns:
            Number of refs appended.
        """
        if not refs:
            return 0
        with self._lock:
            self._items.extend(refs)
            self._stats.record_observed(len(refs))
        return len(refs)

    def drain_batch(self, limit: int) -> DrainedBatch:
        """Remove up to `limit` refs from the head, tagged with the current generation."""
        with self._lock:
            generation = self._stats.generation
            if limit <= 0 or not self._items:
                return DrainedBatch(refs=(), generation=generation)
            count = min(limit, len(self._items))
            refs = tuple(self._items.popleft() for _ in range(count))
        return DrainedBatch(refs=refs, generation=generation)

    def drain_up_to(self, limit: int) -> list[TransactionRef]:
        """Remove and return up to `limit` refs from the head, in order."""
        return list(self.drain_batch(limit).refs)

    def clear(self) -> int:
        """Discard all buffered refs without classifying them.

        Returns:
            Number of refs discarded.
        """
        with self._lock:
            discarded = len(self._items)
            self._items.clear()
        if discarded:
            logger.debug("Discarded %d buffered transactions", discarded)
        return discarded

    def reset(self) -> int:
        """Discard buffered refs and zero the statistics in one step."""
        with self._lock:
            discarded = len(self._items)
            self._items.clear()
            self._stats.reset()
        return discarded

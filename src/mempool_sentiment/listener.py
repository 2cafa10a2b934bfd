"""Subscription lifecycle management for pending transactions and new blocks.

Each listener instance owns its own buffer, scheduler and statistics; two
listeners never share state.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from mempool_sentiment.classifier.rules import TransactionClassifier
from mempool_sentiment.ingestor.buffer import IntakeBuffer
from mempool_sentiment.ingestor.models import BlockSummary, TransactionRef
from mempool_sentiment.ingestor.websocket import BlockCallback, TransactionsCallback, Unsubscribe
from mempool_sentiment.scheduler import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_COOLDOWN_SECONDS,
    DEFAULT_STAGGER_SECONDS,
    BatchScheduler,
    Classifier,
    EnrichmentGateway,
)
from mempool_sentiment.stats import AggregateStatistics, StatsSnapshot

logger = logging.getLogger(__name__)

DEFAULT_RECENT_TRANSACTIONS_LIMIT = 150
DEFAULT_BLOCK_HISTORY_LIMIT = 100


class TransactionFeed(Protocol):
    """Push-based source of pending transaction hashes."""

    def watch_pending_transactions(self, on_transactions: TransactionsCallback) -> Unsubscribe: ...


class BlockFeed(Protocol):
    """Push-based source of new block summaries."""

    def watch_blocks(self, on_block: BlockCallback) -> Unsubscribe: ...


class ListenerState(str, Enum):
    """Listener lifecycle states."""

    IDLE = "idle"
    LISTENING = "listening"


@dataclass(frozen=True)
class ListenerReport:
    """Read-only view handed to the presentation layer."""

    state: ListenerState
    stats: StatsSnapshot
    recent_transactions: tuple[TransactionRef, ...]
    buffered: int


class PendingTransactionListener:
    """Feeds pending transaction hashes into the classification pipeline.

    Flow:
        feed -> IntakeBuffer -> BatchScheduler -> gateway -> classifier -> stats

    Example:
        ```python
        listener = PendingTransactionListener(feed, gateway=client)
        await listener.start()
        ...
        print(listener.report().stats.dominance)
        await listener.stop()
        ```
    """

    def __init__(
        self,
        feed: TransactionFeed,
        *,
        gateway: EnrichmentGateway,
        classifier: Classifier | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        stagger_seconds: float = DEFAULT_STAGGER_SECONDS,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        recent_limit: int = DEFAULT_RECENT_TRANSACTIONS_LIMIT,
    ) -> None:
        self._feed = feed
        self._state = ListenerState.IDLE
        self._unsubscribe: Unsubscribe | None = None

        self._stats = AggregateStatistics()
        self._buffer = IntakeBuffer(self._stats)
        self._scheduler = BatchScheduler(
            self._buffer,
            self._stats,
            gateway=gateway,
            classifier=classifier or TransactionClassifier(),
            batch_size=batch_size,
            stagger_seconds=stagger_seconds,
            cooldown_seconds=cooldown_seconds,
        )
        self._scheduler.halt()
        self._recent: deque[TransactionRef] = deque(maxlen=recent_limit)

    @property
    def state(self) -> ListenerState:
        return self._state

    @property
    def is_listening(self) -> bool:
        return self._state == ListenerState.LISTENING

    @property
    def stats(self) -> AggregateStatistics:
        return self._stats

    @property
    def buffer(self) -> IntakeBuffer:
        return self._buffer

    @property
    def scheduler(self) -> BatchScheduler:
        return self._scheduler

    @property
    def recent_transactions(self) -> tuple[TransactionRef, ...]:
        """Most recently observed hashes, newest first."""
        return tuple(self._recent)

    async def start(self) -> None:
        """Open the subscription. No-op if already listening."""
        if self._state == ListenerState.LISTENING:
            return
        self._state = ListenerState.LISTENING
        self._scheduler.resume()
        try:
            self._unsubscribe = self._feed.watch_pending_transactions(self._on_transactions)
        except Exception:
            self._state = ListenerState.IDLE
            self._scheduler.halt()
            raise
        logger.info("Pending transaction listener started")

    async def stop(self) -> None:
        """Close the subscription and discard unprocessed refs.

        A batch already in flight still commits its results, but no further
        cycle starts after this returns. No-op if already idle.
        """
        if self._state == ListenerState.IDLE:
            return
        self._state = ListenerState.IDLE
        self._scheduler.halt()

        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            try:
                await unsubscribe()
            except Exception as e:
                logger.warning("Error closing pending transaction subscription: %s", e)

        discarded = self._buffer.clear()
        logger.info("Pending transaction listener stopped (discarded %d buffered)", discarded)

    def reset(self) -> None:
        """Zero statistics and drop buffered and recent refs. Lifecycle state is unchanged."""
        discarded = self._buffer.reset()
        self._recent.clear()
        logger.info("Statistics reset (discarded %d buffered)", discarded)

    async def _on_transactions(self, refs: Sequence[TransactionRef]) -> None:
        if self._state != ListenerState.LISTENING or not refs:
            return
        # Delivery order is oldest first; the recent list shows newest first.
        self._recent.extendleft(refs)
        self._buffer.append(refs)
        self._scheduler.trigger()

    def report(self) -> ListenerReport:
        return ListenerReport(
            state=self._state,
            stats=self._stats.snapshot(),
            recent_transactions=self.recent_transactions,
            buffered=len(self._buffer),
        )

    async def aclose(self) -> None:
        """Stop listening and wait for an in-flight batch to commit."""
        await self.stop()
        await self._scheduler.wait_idle()


class BlockListener:
    """Records new block summaries. No classification is involved."""

    def __init__(self, feed: BlockFeed, *, history_limit: int = DEFAULT_BLOCK_HISTORY_LIMIT) -> None:
        self._feed = feed
        self._state = ListenerState.IDLE
        self._unsubscribe: Unsubscribe | None = None
        self._blocks: deque[BlockSummary] = deque(maxlen=history_limit)
        self._block_count = 0

    @property
    def state(self) -> ListenerState:
        return self._state

    @property
    def block_count(self) -> int:
        return self._block_count

    @property
    def blocks(self) -> tuple[BlockSummary, ...]:
        """Recent blocks, newest first."""
        return tuple(self._blocks)

    async def start(self) -> None:
        if self._state == ListenerState.LISTENING:
            return
        self._state = ListenerState.LISTENING
        try:
            self._unsubscribe = self._feed.watch_blocks(self._on_block)
        except Exception:
            self._state = ListenerState.IDLE
            raise
        logger.info("Block listener started")

    async def stop(self) -> None:
        if self._state == ListenerState.IDLE:
            return
        self._state = ListenerState.IDLE
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            try:
                await unsubscribe()
            except Exception as e:
                logger.warning("Error closing block subscription: %s", e)
        logger.info("Block listener stopped")

    async def _on_block(self, block: BlockSummary) -> None:
        if self._state != ListenerState.LISTENING:
            return
        self._block_count += 1
        self._blocks.appendleft(block)
        logger.debug("Block %d: %d transactions", block.number, block.transaction_count)

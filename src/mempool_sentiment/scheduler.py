"""Batch scheduler that drains the intake buffer through enrichment and classification.

One drain cycle:
    drain <= batch_size refs -> staggered concurrent fetch_detail calls
    -> classify each result -> commit counters as one unit
    -> after a cooldown, start the next cycle while refs remain

At most one cycle runs at a time per scheduler. Enrichment failures classify
as neutral and never abort a batch.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from mempool_sentiment.classifier.models import Classification
from mempool_sentiment.classifier.rules import TransactionClassifier
from mempool_sentiment.ingestor.buffer import IntakeBuffer
from mempool_sentiment.ingestor.models import TransactionDetail, TransactionRef
from mempool_sentiment.stats import AggregateStatistics

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10
DEFAULT_STAGGER_SECONDS = 0.05
DEFAULT_COOLDOWN_SECONDS = 0.1


class EnrichmentGateway(Protocol):
    """Anything that can resolve a transaction hash to its detail.

    Implementations raise LookupError when the detail is unavailable and must
    tolerate batch_size concurrent calls.
    """

    async def fetch_detail(self, tx_hash: TransactionRef) -> TransactionDetail: ...


class Classifier(Protocol):
    def classify(self, detail: TransactionDetail | None) -> Classification: ...


class BatchScheduler:
    """Drains an IntakeBuffer in bounded, rate-staggered batches.

    Example:
        ```python
        stats = AggregateStatistics()
        buffer = IntakeBuffer(stats)
        scheduler = BatchScheduler(buffer, stats, gateway=client)

        buffer.append(refs)
        await scheduler.maybe_drain()
        ```
    """

    def __init__(
        self,
        buffer: IntakeBuffer,
        stats: AggregateStatistics,
        *,
        gateway: EnrichmentGateway,
        classifier: Classifier | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        stagger_seconds: float = DEFAULT_STAGGER_SECONDS,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        auto_continue: bool = True,
    ) -> None:
        """Initialize the scheduler.

        Args:
            buffer: Intake buffer to drain.
            stats: Statistics record the buffer feeds.
            gateway: Enrichment gateway used to fetch transaction detail.
            classifier: Classifier applied to each detail.
            batch_size: Maximum refs per cycle.
            stagger_seconds: Issuance delay between consecutive items in a batch.
            cooldown_seconds: Delay before the follow-up cycle.
            auto_continue: Schedule follow-up cycles while refs remain.
        """
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if stagger_seconds < 0 or cooldown_seconds < 0:
            raise ValueError("stagger_seconds and cooldown_seconds must be >= 0")

        self._buffer = buffer
        self._stats = stats
        self._gateway = gateway
        self._classifier: Classifier = classifier or TransactionClassifier()
        self._batch_size = batch_size
        self._stagger = stagger_seconds
        self._cooldown = cooldown_seconds
        self._auto_continue = auto_continue

        # Held for the whole cycle; acquired only when immediately free.
        self._drain_lock = asyncio.Lock()
        self._active = True
        self._tasks: set[asyncio.Task[int]] = set()
        self._continuation: asyncio.TimerHandle | None = None

        self.batches_completed = 0
        self.lookup_failures = 0

    @property
    def batch_size(self) -> int:
        return self._batch_size

    @property
    def is_draining(self) -> bool:
        return self._drain_lock.locked()

    @property
    def is_active(self) -> bool:
        return self._active

    def halt(self) -> None:
        """Stop starting new cycles. An in-flight batch is left to finish."""
        self._active = False
        if self._continuation is not None:
            self._continuation.cancel()
            self._continuation = None

    def resume(self) -> None:
        self._active = True

    def trigger(self) -> asyncio.Task[int] | None:
        """Start a drain cycle in the background if one could run now."""
        if not self._active or self.is_draining or self._buffer.is_empty:
            return None
        task = asyncio.create_task(self.maybe_drain())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait until no cycle is running or scheduled to start."""
        while self._tasks or self._continuation is not None:
            if self._tasks:
                await asyncio.gather(*self._tasks, return_exceptions=True)
            else:
                await asyncio.sleep(self._cooldown or 0)

    async def maybe_drain(self) -> int:
        """Run one drain cycle unless halted, busy or idle.

        Returns:
            Number of transactions analyzed in this cycle (0 if it was a no-op).
        """
        if not self._active or self._drain_lock.locked() or self._buffer.is_empty:
            return 0

        # No await between the check above and acquiring the lock.
        async with self._drain_lock:
            batch = self._buffer.drain_batch(self._batch_size)
            if not batch.refs:
                return 0

            details = await asyncio.gather(
                *(self._enrich(index, ref) for index, ref in enumerate(batch.refs))
            )

            classifications = [self._classifier.classify(detail) for detail in details]
            buys = sum(1 for c in classifications if c is Classification.BUY)
            sells = sum(1 for c in classifications if c is Classification.SELL)

            applied = self._stats.commit_batch(
                analyzed=len(batch.refs),
                buys=buys,
                sells=sells,
                generation=batch.generation,
            )
            self.batches_completed += 1
            logger.debug(
                "Batch of %d classified: buys=%d sells=%d applied=%s",
                len(batch.refs),
                buys,
                sells,
                applied,
            )

        self._schedule_continuation()
        return len(batch.refs)

    async def _enrich(self, index: int, ref: TransactionRef) -> TransactionDetail | None:
        if index and self._stagger:
            await asyncio.sleep(index * self._stagger)
        try:
            return await self._gateway.fetch_detail(ref)
        except LookupError as e:
            self.lookup_failures += 1
            logger.debug("Lookup failed for %s: %s", ref, e)
        except Exception as e:
            self.lookup_failures += 1
            logger.warning("Unexpected enrichment error for %s: %s", ref, e)
        return None

    def _schedule_continuation(self) -> None:
        if not (self._auto_continue and self._active) or self._buffer.is_empty:
            return
        if self._continuation is not None:
            return
        loop = asyncio.get_running_loop()
        self._continuation = loop.call_later(self._cooldown, self._run_continuation)

    def _run_continuation(self) -> None:
        self._continuation = None
        self.trigger()

    async def aclose(self) -> None:
        """Halt and wait for any in-flight cycle to commit."""
        self.halt()
        await self.wait_idle()

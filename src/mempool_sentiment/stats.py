"""Running aggregate statistics for classified pending transactions.

Counters are owned by one listener instance. Every mutation happens under a
single lock so a committed batch is never partially visible.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from mempool_sentiment.classifier.models import Dominance

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatsSnapshot:
    """Point-in-time copy of the aggregate counters."""

    total_observed: int = 0
    total_analyzed: int = 0
    buy_count: int = 0
    sell_count: int = 0

    @property
    def directional_count(self) -> int:
        return self.buy_count + self.sell_count

    @property
    def neutral_count(self) -> int:
        return self.total_analyzed - self.buy_count - self.sell_count

    @property
    def buy_share(self) -> float:
        """Fraction of directional transactions classified as buys."""
        if self.directional_count == 0:
            return 0.0
        return self.buy_count / self.directional_count

    @property
    def sell_share(self) -> float:
        """Fraction of directional transactions classified as sells."""
        if self.directional_count == 0:
            return 0.0
        return self.sell_count / self.directional_count

    @property
    def analysis_rate(self) -> float:
        """Fraction of observed transactions that have been classified."""
        if self.total_observed == 0:
            return 0.0
        return self.total_analyzed / self.total_observed

    @property
    def dominance(self) -> Dominance:
        if self.buy_count > self.sell_count:
            return Dominance.BUY
        if self.sell_count > self.buy_count:
            return Dominance.SELL
        return Dominance.NEUTRAL


class AggregateStatistics:
    """Thread-safe counters describing net directional pressure.

    Invariants:
        total_analyzed <= total_observed
        buy_count + sell_count <= total_analyzed

    Each reset() starts a new generation. A batch drained under an older
    generation is discarded on commit, since the refs it carries were
    observed before the counters were zeroed.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._total_observed = 0
        self._total_analyzed = 0
        self._buy_count = 0
        self._sell_count = 0
        self._generation = 0

    @property
    def total_observed(self) -> int:
        return self._total_observed

    @property
    def total_analyzed(self) -> int:
        return self._total_analyzed

    @property
    def buy_count(self) -> int:
        return self._buy_count

    @property
    def sell_count(self) -> int:
        return self._sell_count

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def buy_share(self) -> float:
        return self.snapshot().buy_share

    @property
    def analysis_rate(self) -> float:
        return self.snapshot().analysis_rate

    @property
    def dominance(self) -> Dominance:
        return self.snapshot().dominance

    def record_observed(self, count: int) -> None:
        if count < 0:
            raise ValueError("count must be >= 0")
        with self._lock:
            self._total_observed += count

    def commit_batch(
        self,
        *,
        analyzed: int,
        buys: int,
        sells: int,
        generation: int | None = None,
    ) -> bool:
        """Fold one completed batch into the counters atomically.

        Args:
            analyzed: Number of transactions in the batch.
            buys: Number classified as buy.
            sells: Number classified as sell.
            generation: Generation the batch was drained under. Defaults to
                the current generation.

        Returns:
            True if the batch was applied, False if it was discarded because
            a reset happened after it was drained.
        """
        if min(analyzed, buys, sells) < 0 or buys + sells > analyzed:
            raise ValueError(f"Invalid batch counts: analyzed={analyzed} buys={buys} sells={sells}")

        with self._lock:
            if generation is not None and generation != self._generation:
                logger.debug(
                    "Discarding batch of %d from generation %d (current %d)",
                    analyzed,
                    generation,
                    self._generation,
                )
                return False
            if self._total_analyzed + analyzed > self._total_observed:
                raise ValueError("Batch would exceed total observed transactions")
            self._total_analyzed += analyzed
            self._buy_count += buys
            self._sell_count += sells
            return True

    def reset(self) -> None:
        with self._lock:
            self._total_observed = 0
            self._total_analyzed = 0
            self._buy_count = 0
            self._sell_count = 0
            self._generation += 1

    def snapshot(self) -> StatsSnapshot:
        with self._lock:
            return StatsSnapshot(
                total_observed=self._total_observed,
                total_analyzed=self._total_analyzed,
                buy_count=self._buy_count,
                sell_count=self._sell_count,
            )

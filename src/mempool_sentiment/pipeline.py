"""Main pipeline orchestrator for the Mempool Sentiment Tracker.

This module provides the Pipeline class that wires the node subscription,
enrichment client, listeners and periodic reporting together.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from redis.asyncio import Redis

from mempool_sentiment.config import Settings, get_settings
from mempool_sentiment.enrichment.chain import EthereumClient
from mempool_sentiment.ingestor.websocket import NodeSubscriptionFeed
from mempool_sentiment.listener import BlockListener, ListenerReport, PendingTransactionListener
from mempool_sentiment.reporting import SentimentReportFormatter

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    reports_emitted: int = 0
    errors: int = 0
    last_error: str | None = None


class Pipeline:
    """Main pipeline orchestrator for the Mempool Sentiment Tracker.

    Pipeline flow:
        eth_subscribe(newPendingTransactions) → IntakeBuffer → BatchScheduler
        → EthereumClient → TransactionClassifier → AggregateStatistics

    Example:
        ```python
        from mempool_sentiment.config import get_settings
        from mempool_sentiment.pipeline import Pipeline

        settings = get_settings()
        pipeline = Pipeline(settings)

        await pipeline.start()
        # Pipeline runs until stop() is called
        await pipeline.stop()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        formatter: SentimentReportFormatter | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            formatter: Formatter for the periodic report log line.
        """
        self._settings = settings or get_settings()
        self._formatter = formatter or SentimentReportFormatter()

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()

        # Components (initialized in start())
        self._redis: Redis | None = None
        self._client: EthereumClient | None = None
        self._feed: NodeSubscriptionFeed | None = None
        self._tx_listener: PendingTransactionListener | None = None
        self._block_listener: BlockListener | None = None

        # Synchronization
        self._stop_event: asyncio.Event | None = None
        self._report_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        """Current pipeline statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if pipeline is running."""
        return self._state == PipelineState.RUNNING

    @property
    def transaction_listener(self) -> PendingTransactionListener | None:
        return self._tx_listener

    @property
    def block_listener(self) -> BlockListener | None:
        return self._block_listener

    async def start(self) -> None:
        """Start the pipeline.

        Initializes all components and begins listening.

        Raises:
            RuntimeError: If pipeline is already running.
            Exception: If any component fails to initialize.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting pipeline...")

        try:
            await self._initialize_components()
            await self._start_listeners()
            self._report_task = asyncio.create_task(self._run_report_loop())
            self._stats.started_at = datetime.now(UTC)
            self._state = PipelineState.RUNNING
            logger.info("Pipeline started successfully")
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            self._stats.errors += 1
            logger.error("Failed to start pipeline: %s", e)
            await self._stop_listeners()
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Stop the pipeline gracefully.

        Stops the listeners, lets an in-flight batch commit, and releases
        resources.
        """
        if self._state == PipelineState.STOPPED:
            return

        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")

        if self._stop_event:
            self._stop_event.set()

        if self._report_task:
            self._report_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._report_task
            self._report_task = None

        await self._stop_listeners()
        self._log_report()
        await self._cleanup()

        self._state = PipelineState.STOPPED
        logger.info("Pipeline stopped")

    def reset(self) -> None:
        """Zero the sentiment statistics without interrupting the subscription."""
        if self._tx_listener:
            self._tx_listener.reset()

    def report(self) -> ListenerReport | None:
        if not self._tx_listener:
            return None
        return self._tx_listener.report()

    async def _initialize_components(self) -> None:
        """Initialize all pipeline components."""
        settings = self._settings

        if settings.redis.url:
            logger.debug("Connecting to Redis for detail caching...")
            self._redis = Redis.from_url(settings.redis.url)

        self._client = EthereumClient(
            settings.ethereum.rpc_url,
            fallback_rpc_url=settings.ethereum.fallback_rpc_url,
            redis=self._redis,
            cache_ttl_seconds=settings.redis.detail_cache_ttl_seconds,
            max_requests_per_second=settings.ethereum.max_requests_per_second,
        )
        self._feed = NodeSubscriptionFeed(
            settings.ethereum.ws_url,
            block_transaction_counter=self._client.get_block_transaction_count,
        )
        self._tx_listener = PendingTransactionListener(
            self._feed,
            gateway=self._client,
            batch_size=settings.scheduler.batch_size,
            stagger_seconds=settings.scheduler.stagger_seconds,
            cooldown_seconds=settings.scheduler.cooldown_seconds,
            recent_limit=settings.reporting.recent_transactions_limit,
        )
        if settings.reporting.blocks_enabled:
            self._block_listener = BlockListener(
                self._feed,
                history_limit=settings.reporting.block_history_limit,
            )

    async def _start_listeners(self) -> None:
        if self._tx_listener:
            logger.debug("Starting pending transaction listener...")
            await self._tx_listener.start()
        if self._block_listener:
            logger.debug("Starting block listener...")
            await self._block_listener.start()

    async def _stop_listeners(self) -> None:
        if self._block_listener:
            logger.debug("Stopping block listener...")
            await self._block_listener.stop()
        if self._tx_listener:
            logger.debug("Stopping pending transaction listener...")
            await self._tx_listener.aclose()

    async def _run_report_loop(self) -> None:
        if not self._stop_event:
            return

        interval = self._settings.reporting.interval_seconds
        while not self._stop_event.is_set():
            try:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                    break
                except TimeoutError:
                    pass
                self._log_report()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self._stats.errors += 1
                self._stats.last_error = str(e)
                logger.warning("Report loop error: %s", e)

    def _log_report(self) -> None:
        report = self.report()
        if report is None:
            return
        blocks = self._block_listener.blocks if self._block_listener else ()
        logger.info("%s", self._formatter.format(report, blocks=blocks))
        self._stats.reports_emitted += 1

    async def _cleanup(self) -> None:
        """Clean up resources."""
        if self._client:
            await self._client.aclose()
            self._client = None

        if self._redis:
            await self._redis.aclose()
            self._redis = None

        self._feed = None
        logger.debug("Resources cleaned up")

    async def run(self) -> None:
        """Start the pipeline and run until interrupted.

        Example:
            ```python
            pipeline = Pipeline()
            try:
                await pipeline.run()
            except KeyboardInterrupt:
                pass
            ```
        """
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    def request_stop(self) -> None:
        """Ask a running `run()` to shut down."""
        if self._stop_event:
            self._stop_event.set()

    async def __aenter__(self) -> Pipeline:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()

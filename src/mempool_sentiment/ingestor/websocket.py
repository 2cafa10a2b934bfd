"""Node WebSocket subscription client (newPendingTransactions / newHeads).

Speaks JSON-RPC `eth_subscribe` over a single WebSocket per subscription and
reconnects with exponential backoff. Connection loss is invisible to callers
beyond a gap in deliveries.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import json
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import websockets
from websockets.asyncio.client import ClientConnection

from mempool_sentiment.ingestor.models import BlockSummary, TransactionRef, parse_transaction_ref

logger = logging.getLogger(__name__)

DEFAULT_PING_INTERVAL = 30  # seconds
DEFAULT_MAX_RECONNECT_DELAY = 30  # seconds
DEFAULT_INITIAL_RECONNECT_DELAY = 1  # seconds
DEFAULT_SUBSCRIBE_TIMEOUT = 10  # seconds

PENDING_TRANSACTIONS = "newPendingTransactions"
NEW_HEADS = "newHeads"


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


@dataclass
class StreamStats:
    notifications_received: int = 0
    reconnect_count: int = 0
    last_message_time: float | None = None
    connected_since: float | None = None
    last_error: str | None = None


class SubscriptionError(Exception):
    """Base exception for subscription stream errors."""


class FeedConnectionError(SubscriptionError):
    """Raised when connection or subscription to the node fails."""


NotificationCallback = Callable[[Any], Awaitable[None]]
StateCallback = Callable[[ConnectionState], Awaitable[None]]
TransactionsCallback = Callable[[list[TransactionRef]], Awaitable[None]]
BlockCallback = Callable[[BlockSummary], Awaitable[None]]
BlockTransactionCounter = Callable[[int], Awaitable[int]]
Unsubscribe = Callable[[], Awaitable[None]]


class SubscriptionStreamHandler:
    """WebSocket client for one `eth_subscribe` subscription kind."""

    def __init__(
        self,
        *,
        host: str,
        subscription: str,
        on_notification: NotificationCallback,
        on_state_change: StateCallback | None = None,
        ping_interval: int = DEFAULT_PING_INTERVAL,
        max_reconnect_delay: int = DEFAULT_MAX_RECONNECT_DELAY,
        initial_reconnect_delay: int = DEFAULT_INITIAL_RECONNECT_DELAY,
    ) -> None:
        self._host = host
        self._subscription = subscription
        self._on_notification = on_notification
        self._on_state_change = on_state_change
        self._ping_interval = ping_interval
        self._max_reconnect_delay = max_reconnect_delay
        self._initial_reconnect_delay = initial_reconnect_delay

        self._state = ConnectionState.DISCONNECTED
        self._stats = StreamStats()
        self._request_ids = itertools.count(1)

        self._ws: ClientConnection | None = None
        self._subscription_id: str | None = None
        self._running = False
        self._stop_event: asyncio.Event | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def stats(self) -> StreamStats:
        return self._stats

    @property
    def subscription(self) -> str:
        return self._subscription

    async def _set_state(self, new_state: ConnectionState) -> None:
        if self._state != new_state:
            old = self._state
            self._state = new_state
            logger.info("%s stream state: %s -> %s", self._subscription, old.value, new_state.value)
            if self._on_state_change:
                try:
                    await self._on_state_change(new_state)
                except Exception as e:  # pragma: no cover
                    logger.error("Error in state change callback: %s", e)

    async def _subscribe(self, ws: ClientConnection) -> str:
        request_id = next(self._request_ids)
        await ws.send(
            json.dumps(
                {
                    "jsonrpc": "2.0",
                    "id": request_id,
                    "method": "eth_subscribe",
                    "params": [self._subscription],
                }
            )
        )
        # Notifications for other subscriptions cannot arrive before our ack.
        raw = await asyncio.wait_for(ws.recv(), timeout=DEFAULT_SUBSCRIBE_TIMEOUT)
        data = json.loads(raw)
        if data.get("id") != request_id or "result" not in data:
            raise FeedConnectionError(f"eth_subscribe({self._subscription}) rejected: {data.get('error', data)}")
        return str(data["result"])

    async def _connect(self) -> ClientConnection:
        await self._set_state(ConnectionState.CONNECTING)
        try:
            ws = await websockets.connect(
                self._host,
                ping_interval=self._ping_interval,
                ping_timeout=self._ping_interval * 2,
            )
        except Exception as e:
            self._stats.last_error = str(e)
            raise FeedConnectionError(f"Failed to connect to {self._host}: {e}") from e

        try:
            self._subscription_id = await self._subscribe(ws)
        except Exception:
            with contextlib.suppress(Exception):
                await ws.close()
            raise

        await self._set_state(ConnectionState.CONNECTED)
        self._stats.connected_since = time.time()
        logger.info("Subscribed to %s on %s (id=%s)", self._subscription, self._host, self._subscription_id)
        return ws

    async def _handle_message(self, message: str) -> None:
        try:
            data = json.loads(message)
        except json.JSONDecodeError:  # pragma: no cover
            logger.warning("Invalid JSON message on %s stream", self._subscription)
            return

        if data.get("method") != "eth_subscription":
            logger.debug("Ignoring non-notification message: %r", data)
            return

        params = data.get("params") or {}
        if params.get("subscription") != self._subscription_id:
            logger.debug("Ignoring notification for subscription %r", params.get("subscription"))
            return

        self._stats.notifications_received += 1
        self._stats.last_message_time = time.time()
        try:
            await self._on_notification(params.get("result"))
        except Exception as e:
            logger.error("Error in %s notification callback: %s", self._subscription, e)

    async def _listen(self, ws: ClientConnection) -> None:
        try:
            while self._running:
                try:
                    message = await asyncio.wait_for(ws.recv(), timeout=1.0)
                except TimeoutError:
                    continue

                if isinstance(message, str):
                    await self._handle_message(message)
                else:
                    logger.debug("Ignoring non-text %s message", self._subscription)
        except websockets.ConnectionClosed as e:
            logger.warning("%s stream connection closed: %s", self._subscription, e)
            raise

    async def start(self) -> None:
        if self._running:
            raise RuntimeError(f"{self._subscription} stream already running")
        self._running = True
        self._stop_event = asyncio.Event()

        delay = self._initial_reconnect_delay
        while self._running and self._stop_event and not self._stop_event.is_set():
            try:
                self._ws = await self._connect()
                delay = self._initial_reconnect_delay
                await self._listen(self._ws)
            except Exception as e:
                if not self._running:
                    break
                self._stats.reconnect_count += 1
                self._stats.last_error = str(e)
                await self._set_state(ConnectionState.RECONNECTING)
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                delay = min(self._max_reconnect_delay, delay * 2)
            finally:
                with contextlib.suppress(Exception):
                    if self._ws:
                        await self._ws.close()
                self._ws = None
                self._subscription_id = None

        await self._set_state(ConnectionState.DISCONNECTED)

    async def stop(self) -> None:
        self._running = False
        if self._stop_event:
            self._stop_event.set()
        if self._ws:
            with contextlib.suppress(Exception):
                await self._ws.close()


class NodeSubscriptionFeed:
    """Push-based feed of pending transaction hashes and new block summaries.

    Each watch_* call opens its own subscription stream in a background task
    and returns an async unsubscribe handle.

    Example:
        ```python
        feed = NodeSubscriptionFeed("wss://eth.drpc.org")

        async def on_transactions(refs):
            print(len(refs))

        unsubscribe = feed.watch_pending_transactions(on_transactions)
        ...
        await unsubscribe()
        ```
    """

    def __init__(
        self,
        host: str,
        *,
        block_transaction_counter: BlockTransactionCounter | None = None,
        ping_interval: int = DEFAULT_PING_INTERVAL,
        max_reconnect_delay: int = DEFAULT_MAX_RECONNECT_DELAY,
        initial_reconnect_delay: int = DEFAULT_INITIAL_RECONNECT_DELAY,
    ) -> None:
        self._host = host
        self._block_transaction_counter = block_transaction_counter
        self._ping_interval = ping_interval
        self._max_reconnect_delay = max_reconnect_delay
        self._initial_reconnect_delay = initial_reconnect_delay
        self._handlers: list[SubscriptionStreamHandler] = []

    @property
    def handlers(self) -> tuple[SubscriptionStreamHandler, ...]:
        return tuple(self._handlers)

    def _new_handler(self, subscription: str, on_notification: NotificationCallback) -> SubscriptionStreamHandler:
        return SubscriptionStreamHandler(
            host=self._host,
            subscription=subscription,
            on_notification=on_notification,
            ping_interval=self._ping_interval,
            max_reconnect_delay=self._max_reconnect_delay,
            initial_reconnect_delay=self._initial_reconnect_delay,
        )

    def _spawn(self, handler: SubscriptionStreamHandler) -> Unsubscribe:
        task = asyncio.create_task(handler.start())
        self._handlers.append(handler)

        async def unsubscribe() -> None:
            await handler.stop()
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            with contextlib.suppress(ValueError):
                self._handlers.remove(handler)

        return unsubscribe

    def watch_pending_transactions(self, on_transactions: TransactionsCallback) -> Unsubscribe:
        """Subscribe to newly observed pending transaction hashes."""

        async def on_notification(result: Any) -> None:
            # Some providers push a single hash, others a list of them.
            raw_items = result if isinstance(result, list) else [result]
            refs: list[TransactionRef] = []
            for raw in raw_items:
                try:
                    refs.append(parse_transaction_ref(raw))
                except ValueError as e:
                    logger.debug("Skipping malformed pending transaction: %s", e)
            if refs:
                await on_transactions(refs)

        return self._spawn(self._new_handler(PENDING_TRANSACTIONS, on_notification))

    def watch_blocks(self, on_block: BlockCallback) -> Unsubscribe:
        """Subscribe to new block headers, resolved to block summaries."""

        async def on_notification(header: Any) -> None:
            if not isinstance(header, dict) or "number" not in header:
                logger.debug("Skipping malformed block header: %r", header)
                return
            number = int(header["number"], 16) if isinstance(header["number"], str) else int(header["number"])
            transaction_count = 0
            if self._block_transaction_counter is not None:
                try:
                    transaction_count = await self._block_transaction_counter(number)
                except Exception as e:
                    logger.warning("Failed to count transactions for block %d: %s", number, e)
                    return
            await on_block(BlockSummary.from_header(header, transaction_count=transaction_count))

        return self._spawn(self._new_handler(NEW_HEADS, on_notification))

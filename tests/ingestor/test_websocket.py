"""Tests for the node subscription feed."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import pytest

from mempool_sentiment.ingestor.websocket import (
    NEW_HEADS,
    PENDING_TRANSACTIONS,
    FeedConnectionError,
    NodeSubscriptionFeed,
    SubscriptionStreamHandler,
)


def _notification(subscription_id: str, result: object) -> str:
    return json.dumps(
        {
            "jsonrpc": "2.0",
            "method": "eth_subscription",
            "params": {"subscription": subscription_id, "result": result},
        }
    )


@pytest.fixture
def handler_with_callback():
    callback = AsyncMock()
    handler = SubscriptionStreamHandler(
        host="wss://node.test",
        subscription=PENDING_TRANSACTIONS,
        on_notification=callback,
    )
    handler._subscription_id = "0xsub1"
    return handler, callback


class TestSubscriptionStreamHandler:
    @pytest.mark.asyncio
    async def test_forwards_matching_notifications(self, handler_with_callback, sample_tx_hash) -> None:
        handler, callback = handler_with_callback

        await handler._handle_message(_notification("0xsub1", sample_tx_hash))

        callback.assert_awaited_once_with(sample_tx_hash)
        assert handler.stats.notifications_received == 1
        assert handler.stats.last_message_time is not None

    @pytest.mark.asyncio
    async def test_ignores_other_subscriptions_and_responses(self, handler_with_callback) -> None:
        handler, callback = handler_with_callback

        await handler._handle_message(_notification("0xother", "0x" + "1" * 64))
        await handler._handle_message(json.dumps({"jsonrpc": "2.0", "id": 7, "result": True}))

        callback.assert_not_awaited()
        assert handler.stats.notifications_received == 0

    @pytest.mark.asyncio
    async def test_callback_errors_do_not_propagate(self, handler_with_callback) -> None:
        handler, callback = handler_with_callback
        callback.side_effect = RuntimeError("boom")

        await handler._handle_message(_notification("0xsub1", "0x" + "1" * 64))

        assert handler.stats.notifications_received == 1

    @pytest.mark.asyncio
    async def test_subscribe_returns_subscription_id(self, handler_with_callback) -> None:
        handler, _ = handler_with_callback
        ws = AsyncMock()
        ws.recv.return_value = json.dumps({"jsonrpc": "2.0", "id": 1, "result": "0xabc"})

        assert await handler._subscribe(ws) == "0xabc"

        sent = json.loads(ws.send.await_args.args[0])
        assert sent["method"] == "eth_subscribe"
        assert sent["params"] == [PENDING_TRANSACTIONS]

    @pytest.mark.asyncio
    async def test_subscribe_rejected(self, handler_with_callback) -> None:
        handler, _ = handler_with_callback
        ws = AsyncMock()
        ws.recv.return_value = json.dumps(
            {"jsonrpc": "2.0", "id": 1, "error": {"code": -32601, "message": "method not found"}}
        )

        with pytest.raises(FeedConnectionError, match="rejected"):
            await handler._subscribe(ws)


class TestNodeSubscriptionFeed:
    @pytest.mark.asyncio
    async def test_pending_transactions_accepts_single_hash_and_lists(self, sample_tx_hash, make_tx_ref) -> None:
        feed = NodeSubscriptionFeed("wss://node.test")
        on_transactions = AsyncMock()

        with patch.object(SubscriptionStreamHandler, "start", AsyncMock()):
            unsubscribe = feed.watch_pending_transactions(on_transactions)
            (handler,) = feed.handlers
            assert handler.subscription == PENDING_TRANSACTIONS

            await handler._on_notification(sample_tx_hash)
            await handler._on_notification([make_tx_ref(2), "garbage", make_tx_ref(3)])
            await handler._on_notification(["garbage"])

            await unsubscribe()

        assert on_transactions.await_count == 2
        assert on_transactions.await_args_list[0].args[0] == [sample_tx_hash]
        assert on_transactions.await_args_list[1].args[0] == [make_tx_ref(2), make_tx_ref(3)]
        assert feed.handlers == ()

    @pytest.mark.asyncio
    async def test_blocks_resolve_transaction_count(self) -> None:
        counter = AsyncMock(return_value=142)
        feed = NodeSubscriptionFeed("wss://node.test", block_transaction_counter=counter)
        on_block = AsyncMock()

        with patch.object(SubscriptionStreamHandler, "start", AsyncMock()):
            unsubscribe = feed.watch_blocks(on_block)
            (handler,) = feed.handlers
            assert handler.subscription == NEW_HEADS

            await handler._on_notification({"number": "0x1234", "timestamp": "0x65a0b2c0"})
            await unsubscribe()

        counter.assert_awaited_once_with(0x1234)
        block = on_block.await_args.args[0]
        assert block.number == 0x1234
        assert block.transaction_count == 142

    @pytest.mark.asyncio
    async def test_block_skipped_when_count_fails(self) -> None:
        counter = AsyncMock(side_effect=OSError("rpc down"))
        feed = NodeSubscriptionFeed("wss://node.test", block_transaction_counter=counter)
        on_block = AsyncMock()

        with patch.object(SubscriptionStreamHandler, "start", AsyncMock()):
            unsubscribe = feed.watch_blocks(on_block)
            handler = feed.handlers[0]
            await handler._on_notification({"number": "0x1", "timestamp": "0x1"})
            await handler._on_notification("not a header")
            await unsubscribe()

        on_block.assert_not_awaited()

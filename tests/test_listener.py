"""Tests for the subscription lifecycle listeners."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import pytest

from mempool_sentiment.classifier.models import Dominance
from mempool_sentiment.ingestor.models import BlockSummary, TransactionDetail
from mempool_sentiment.listener import BlockListener, ListenerState, PendingTransactionListener

SELL = TransactionDetail(method_selector="0x7ff36ab5", value=10**18, to="0xrouter")
BUY = TransactionDetail(method_selector="0x18cbafe5", value=0, to="0xrouter")


def _listener(feed, gateway, **kwargs) -> PendingTransactionListener:
    kwargs.setdefault("stagger_seconds", 0)
    kwargs.setdefault("cooldown_seconds", 0)
    return PendingTransactionListener(feed, gateway=gateway, **kwargs)


def _block(number: int, count: int = 100) -> BlockSummary:
    return BlockSummary(number=number, transaction_count=count, timestamp=datetime.now(UTC))


class TestPendingTransactionLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_stop_are_idempotent(self, fake_feed, fake_gateway) -> None:
        listener = _listener(fake_feed, fake_gateway)
        assert listener.state == ListenerState.IDLE

        await listener.start()
        await listener.start()
        assert listener.is_listening
        assert listener.scheduler.is_active

        await listener.stop()
        await listener.stop()
        assert listener.state == ListenerState.IDLE
        assert not listener.scheduler.is_active
        assert fake_feed.unsubscribed == 1

    @pytest.mark.asyncio
    async def test_start_failure_leaves_listener_idle(self, fake_gateway) -> None:
        class BrokenFeed:
            def watch_pending_transactions(self, on_transactions):
                raise ConnectionError("node unreachable")

        listener = _listener(BrokenFeed(), fake_gateway)
        with pytest.raises(ConnectionError):
            await listener.start()
        assert listener.state == ListenerState.IDLE
        assert not listener.scheduler.is_active

    @pytest.mark.asyncio
    async def test_deliveries_ignored_when_idle(self, fake_feed, fake_gateway, make_tx_ref) -> None:
        listener = _listener(fake_feed, fake_gateway)
        await listener.start()
        callback = fake_feed.on_transactions
        await listener.stop()

        await callback([make_tx_ref(1)])

        assert listener.stats.total_observed == 0
        assert listener.buffer.is_empty
        assert listener.recent_transactions == ()

    @pytest.mark.asyncio
    async def test_classifies_deliveries(self, fake_feed, gateway_factory, make_tx_ref) -> None:
        refs = [make_tx_ref(i) for i in range(12)]
        details = {ref: SELL for ref in refs[:3]}
        details.update({ref: BUY for ref in refs[3:10]})
        listener = _listener(fake_feed, gateway_factory(details))
        await listener.start()

        await fake_feed.on_transactions(refs)
        await listener.scheduler.wait_idle()

        report = listener.report()
        assert report.state == ListenerState.LISTENING
        assert report.stats.total_observed == 12
        assert report.stats.total_analyzed == 12
        assert report.stats.buy_count == 7
        assert report.stats.sell_count == 3
        assert report.stats.dominance is Dominance.BUY
        assert report.buffered == 0

        await listener.aclose()

    @pytest.mark.asyncio
    async def test_stop_during_in_flight_batch(self, fake_feed, gateway_factory, make_tx_ref) -> None:
        gateway = gateway_factory()
        gates = {}
        for i in range(10):
            gates[make_tx_ref(i)] = asyncio.Event()
        gateway.gates.update(gates)
        listener = _listener(fake_feed, gateway)
        await listener.start()

        await fake_feed.on_transactions([make_tx_ref(i) for i in range(25)])
        await asyncio.sleep(0)
        assert listener.scheduler.is_draining

        await listener.stop()
        assert listener.buffer.is_empty

        for gate in gates.values():
            gate.set()
        await listener.scheduler.wait_idle()

        assert listener.stats.total_observed == 25
        assert listener.stats.total_analyzed == 10
        assert listener.scheduler.batches_completed == 1
        assert listener.buffer.is_empty

    @pytest.mark.asyncio
    async def test_restart_after_stop(self, fake_feed, gateway_factory, make_tx_ref) -> None:
        listener = _listener(fake_feed, gateway_factory({make_tx_ref(1): SELL}))
        await listener.start()
        await listener.stop()
        await listener.start()

        await fake_feed.on_transactions([make_tx_ref(1)])
        await listener.scheduler.wait_idle()

        assert listener.stats.sell_count == 1
        await listener.aclose()


class TestResetAndRecent:
    @pytest.mark.asyncio
    async def test_reset_zeroes_but_keeps_listening(self, fake_feed, gateway_factory, make_tx_ref) -> None:
        listener = _listener(fake_feed, gateway_factory({make_tx_ref(1): BUY}))
        await listener.start()
        await fake_feed.on_transactions([make_tx_ref(1), make_tx_ref(2)])
        await listener.scheduler.wait_idle()

        listener.reset()

        report = listener.report()
        assert report.state == ListenerState.LISTENING
        assert report.stats.total_observed == 0
        assert report.stats.total_analyzed == 0
        assert report.recent_transactions == ()

        await fake_feed.on_transactions([make_tx_ref(1)])
        await listener.scheduler.wait_idle()
        assert listener.stats.buy_count == 1
        await listener.aclose()

    @pytest.mark.asyncio
    async def test_recent_list_is_bounded_newest_first(self, fake_feed, fake_gateway, make_tx_ref) -> None:
        listener = _listener(fake_feed, fake_gateway, recent_limit=150)
        await listener.start()

        await fake_feed.on_transactions([make_tx_ref(i) for i in range(100)])
        await fake_feed.on_transactions([make_tx_ref(i) for i in range(100, 200)])

        recent = listener.recent_transactions
        assert len(recent) == 150
        assert recent[0] == make_tx_ref(199)
        assert recent[-1] == make_tx_ref(50)
        assert listener.stats.total_observed == 200

        await listener.aclose()

    @pytest.mark.asyncio
    async def test_listeners_do_not_share_state(self, fake_feed, gateway_factory, make_tx_ref) -> None:
        feed_a, feed_b = fake_feed, type(fake_feed)()
        a = _listener(feed_a, gateway_factory())
        b = _listener(feed_b, gateway_factory())
        await a.start()
        await b.start()

        await feed_a.on_transactions([make_tx_ref(1), make_tx_ref(2)])

        assert a.stats.total_observed == 2
        assert b.stats.total_observed == 0
        await a.aclose()
        await b.aclose()


class TestBlockListener:
    @pytest.mark.asyncio
    async def test_records_blocks_newest_first(self, fake_feed) -> None:
        listener = BlockListener(fake_feed, history_limit=2)
        await listener.start()

        for number in (1, 2, 3):
            await fake_feed.on_block(_block(number))

        assert listener.block_count == 3
        assert [b.number for b in listener.blocks] == [3, 2]

    @pytest.mark.asyncio
    async def test_stop_ignores_late_blocks(self, fake_feed) -> None:
        listener = BlockListener(fake_feed)
        await listener.start()
        callback = fake_feed.on_block
        await listener.stop()
        await listener.stop()

        await callback(_block(7))

        assert listener.state == ListenerState.IDLE
        assert listener.block_count == 0
        assert fake_feed.unsubscribed == 1

"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio

import pytest

from mempool_sentiment.enrichment.chain import TransactionLookupError
from mempool_sentiment.ingestor.models import TransactionDetail, TransactionRef


def make_ref(n: int) -> TransactionRef:
    """Deterministic, well-formed transaction hash for index n."""
    return TransactionRef("0x" + f"{n:064x}")


class FakeGateway:
    """In-memory enrichment gateway.

    Unknown hashes raise TransactionLookupError. Tracks call order and the
    peak number of concurrent lookups.
    """

    def __init__(
        self,
        details: dict[str, TransactionDetail] | None = None,
        *,
        delay: float = 0.0,
    ) -> None:
        self.details = dict(details or {})
        self.delay = delay
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.gates: dict[str, asyncio.Event] = {}

    async def fetch_detail(self, tx_hash: TransactionRef) -> TransactionDetail:
        self.calls.append(tx_hash)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            gate = self.gates.get(tx_hash)
            if gate is not None:
                await gate.wait()
            if self.delay:
                await asyncio.sleep(self.delay)
            if tx_hash not in self.details:
                raise TransactionLookupError(tx_hash, "not found")
            return self.details[tx_hash]
        finally:
            self.in_flight -= 1


class FakeFeed:
    """Subscription feed that lets tests push deliveries by hand."""

    def __init__(self) -> None:
        self.on_transactions = None
        self.on_block = None
        self.unsubscribed = 0

    def watch_pending_transactions(self, on_transactions):
        self.on_transactions = on_transactions
        return self._unsubscribe

    def watch_blocks(self, on_block):
        self.on_block = on_block
        return self._unsubscribe

    async def _unsubscribe(self) -> None:
        self.unsubscribed += 1


@pytest.fixture
def sample_tx_hash() -> TransactionRef:
    """Sample pending transaction hash for testing."""
    return make_ref(1)


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def fake_feed() -> FakeFeed:
    return FakeFeed()


@pytest.fixture
def make_tx_ref():
    """Factory for deterministic transaction hashes."""
    return make_ref


@pytest.fixture
def gateway_factory():
    """Factory for FakeGateway instances with custom details/delay."""
    return FakeGateway

"""Data models for the ingestor module."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, NewType

TransactionRef = NewType("TransactionRef", str)
"""Hash of an unconfirmed transaction, as delivered by the subscription."""

SELECTOR_BYTES = 4


def _to_bytes(raw: Any) -> bytes:
    """Coerce call data (HexBytes, bytes or hex string) to raw bytes."""
    if raw is None:
        return b""
    if isinstance(raw, (bytes, bytearray, memoryview)):
        return bytes(raw)
    text = str(raw)
    if text.startswith(("0x", "0X")):
        text = text[2:]
    return bytes.fromhex(text)


def _to_int(raw: Any) -> int:
    if raw is None:
        return 0
    if isinstance(raw, str):
        return int(raw, 16) if raw.startswith(("0x", "0X")) else int(raw)
    return int(raw)


def normalize_selector(selector: str) -> str:
    """Normalize a method selector to lower-case 0x-prefixed hex."""
    s = selector.strip().lower()
    if not s.startswith("0x"):
        s = "0x" + s
    return s


def parse_transaction_ref(raw: Any) -> TransactionRef:
    """Validate a raw subscription payload as a transaction hash."""
    if not isinstance(raw, str) or not raw.startswith("0x") or len(raw) != 66:
        raise ValueError(f"Invalid transaction hash: {raw!r}")
    return TransactionRef(raw.lower())


@dataclass(frozen=True)
class TransactionDetail:
    """Enrichment result for a single pending transaction.

    Only the fields the classifier needs are retained: the method selector
    (first four bytes of call data), the native value transferred in wei, and
    the destination address.
    """

    method_selector: str | None
    value: int
    to: str | None = None

    def __post_init__(self) -> None:
        if self.value < 0:
            raise ValueError("value must be >= 0")
        if self.method_selector is not None:
            object.__setattr__(self, "method_selector", normalize_selector(self.method_selector))

    @classmethod
    def from_transaction(cls, tx: Mapping[str, Any]) -> TransactionDetail:
        """Create a TransactionDetail from a web3 transaction mapping."""
        call_data = _to_bytes(tx.get("input", tx.get("data")))
        selector = "0x" + call_data[:SELECTOR_BYTES].hex() if len(call_data) >= SELECTOR_BYTES else None
        to = tx.get("to")
        return cls(
            method_selector=selector,
            value=_to_int(tx.get("value")),
            to=str(to).lower() if to else None,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TransactionDetail:
        """Create a TransactionDetail from its cached dict form."""
        return cls(
            method_selector=data.get("method_selector"),
            value=int(data.get("value", 0)),
            to=data.get("to"),
        )

    def to_dict(self) -> dict[str, Any]:
        # value is stringified so arbitrary-precision wei survives JSON round-trips
        return {
            "method_selector": self.method_selector,
            "value": str(self.value),
            "to": self.to,
        }


@dataclass(frozen=True)
class BlockSummary:
    """A newly finalized block as recorded by the block listener."""

    number: int
    transaction_count: int
    timestamp: datetime

    @classmethod
    def from_header(cls, header: Mapping[str, Any], *, transaction_count: int) -> BlockSummary:
        """Create a BlockSummary from a `newHeads` subscription header."""
        return cls(
            number=_to_int(header["number"]),
            transaction_count=transaction_count,
            timestamp=datetime.fromtimestamp(_to_int(header["timestamp"]), tz=UTC),
        )

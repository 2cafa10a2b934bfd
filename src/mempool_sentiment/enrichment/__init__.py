"""Enrichment layer - Transaction detail lookups over JSON-RPC."""

from mempool_sentiment.enrichment.chain import (
    EnrichmentError,
    EthereumClient,
    RPCError,
    TransactionLookupError,
)

__all__ = [
    "EnrichmentError",
    "EthereumClient",
    "RPCError",
    "TransactionLookupError",
]

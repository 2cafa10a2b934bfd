"""Data ingestion layer - Pending transaction and block streaming."""

from mempool_sentiment.ingestor.models import (
    BlockSummary,
    TransactionDetail,
    TransactionRef,
)
from mempool_sentiment.ingestor.buffer import DrainedBatch, IntakeBuffer
from mempool_sentiment.ingestor.websocket import (
    FeedConnectionError,
    NodeSubscriptionFeed,
    SubscriptionError,
)

__all__ = [
    "BlockSummary",
    "DrainedBatch",
    "FeedConnectionError",
    "IntakeBuffer",
    "NodeSubscriptionFeed",
    "SubscriptionError",
    "TransactionDetail",
    "TransactionRef",
]

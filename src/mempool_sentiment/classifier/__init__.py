"""Classification layer - Heuristic buy/sell/neutral intent."""

from mempool_sentiment.classifier.models import Classification, Dominance
from mempool_sentiment.classifier.rules import (
    DEFAULT_RULES,
    SelectorRule,
    TransactionClassifier,
    classify,
)

__all__ = [
    "Classification",
    "DEFAULT_RULES",
    "Dominance",
    "SelectorRule",
    "TransactionClassifier",
    "classify",
]

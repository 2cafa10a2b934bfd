"""Heuristic buy/sell/neutral classifier for pending transactions.

Classification is an ordered rule table evaluated first-match-wins:

1. No detail (lookup failed) or no method selector -> neutral
2. Direct-sell selector -> sell
3. Direct-buy selector -> buy
4. Generic-swap selector -> sell if ETH value attached, else buy
5. ETH value sent to any destination -> sell
6. Otherwise -> neutral

This is a best-effort signal, not a calldata decoder. Rule 5 in particular
counts every ETH-bearing contract call as a disposal, so deposits, NFT mints
paid in ETH and plain transfers all register as sells.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass

from mempool_sentiment.classifier.models import Classification
from mempool_sentiment.classifier.selectors import (
    DIRECT_BUY_SELECTORS,
    DIRECT_SELL_SELECTORS,
    GENERIC_SWAP_SELECTORS,
)
from mempool_sentiment.ingestor.models import TransactionDetail, normalize_selector

Decision = Callable[[TransactionDetail], Classification]


def _always(classification: Classification) -> Decision:
    def decide(_detail: TransactionDetail) -> Classification:
        return classification

    return decide


def _by_value_sent(detail: TransactionDetail) -> Classification:
    return Classification.SELL if detail.value > 0 else Classification.BUY


@dataclass(frozen=True)
class SelectorRule:
    """Maps a set of method selectors to a classification decision."""

    name: str
    selectors: frozenset[str]
    decide: Decision

    @classmethod
    def create(cls, name: str, selectors: Iterable[str] | Mapping[str, str], decide: Decision) -> SelectorRule:
        return cls(
            name=name,
            selectors=frozenset(normalize_selector(s) for s in selectors),
            decide=decide,
        )

    def matches(self, detail: TransactionDetail) -> bool:
        return detail.method_selector in self.selectors


DEFAULT_RULES: tuple[SelectorRule, ...] = (
    SelectorRule.create("direct_sell", DIRECT_SELL_SELECTORS, _always(Classification.SELL)),
    SelectorRule.create("direct_buy", DIRECT_BUY_SELECTORS, _always(Classification.BUY)),
    SelectorRule.create("generic_swap", GENERIC_SWAP_SELECTORS, _by_value_sent),
)


def value_transfer_fallback(detail: TransactionDetail) -> Classification:
    """Classify a call with an unrecognized selector by its ETH value."""
    if detail.value > 0 and detail.to:
        return Classification.SELL
    return Classification.NEUTRAL


class TransactionClassifier:
    """Applies an ordered selector rule table plus a value-transfer fallback.

    Example:
        ```python
        classifier = TransactionClassifier()
        detail = TransactionDetail(method_selector="0x7ff36ab5", value=10**17)
        assert classifier.classify(detail) is Classification.SELL
        ```
    """

    def __init__(
        self,
        rules: Iterable[SelectorRule] = DEFAULT_RULES,
        *,
        fallback: Decision = value_transfer_fallback,
    ) -> None:
        self._rules = tuple(rules)
        self._fallback = fallback

    @property
    def rules(self) -> tuple[SelectorRule, ...]:
        return self._rules

    def classify(self, detail: TransactionDetail | None) -> Classification:
        """Classify a transaction detail. Never raises.

        Args:
            detail: Enriched transaction, or None when enrichment failed.

        Returns:
            The transaction's Classification.
        """
        if detail is None or detail.method_selector is None:
            return Classification.NEUTRAL

        for rule in self._rules:
            if rule.matches(detail):
                return rule.decide(detail)

        return self._fallback(detail)


_default_classifier = TransactionClassifier()


def classify(detail: TransactionDetail | None) -> Classification:
    """Classify with the default rule table."""
    return _default_classifier.classify(detail)

"""Data models for the classifier module."""

from __future__ import annotations

from enum import Enum


class Classification(str, Enum):
    """Directional intent of a transaction with respect to the native asset.

    BUY means ETH is being acquired, SELL means ETH is being disposed of.
    """

    BUY = "buy"
    SELL = "sell"
    NEUTRAL = "neutral"


class Dominance(str, Enum):
    """Majority direction among classified transactions."""

    BUY = "BUY"
    SELL = "SELL"
    NEUTRAL = "NEUTRAL"

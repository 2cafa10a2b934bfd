"""Mempool Sentiment Tracker - directional pressure from pending transactions."""

__version__ = "0.1.0"

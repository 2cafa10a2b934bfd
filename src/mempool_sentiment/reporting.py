"""Plain-text sentiment report formatter.

Turns a ListenerReport (and optionally the block history) into a compact,
log-friendly summary of directional pressure.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Literal

from mempool_sentiment.classifier.models import Dominance
from mempool_sentiment.ingestor.models import BlockSummary
from mempool_sentiment.listener import ListenerReport

# analysis_rate below this suggests the enrichment provider is degraded
LOW_ANALYSIS_RATE_THRESHOLD = 0.5

DOMINANCE_ARROWS = {
    Dominance.BUY: "▲",
    Dominance.SELL: "▼",
    Dominance.NEUTRAL: "■",
}


def truncate_hash(value: str, chars: int = 6) -> str:
    """Truncate a hash or address to 0x1234...5678 format."""
    if len(value) < chars * 2 + 4:
        return value
    return f"{value[: chars + 2]}...{value[-chars:]}"


def format_percent(fraction: float) -> str:
    """Format a 0..1 fraction with one decimal place."""
    return f"{fraction * 100:.1f}%"


class SentimentReportFormatter:
    """Formats listener reports for the periodic status log.

    Supports two verbosity levels:
    - compact: one line with counters and dominance
    - detailed: adds recent transactions and recent blocks
    """

    def __init__(
        self,
        verbosity: Literal["compact", "detailed"] = "compact",
        *,
        recent_preview: int = 5,
    ) -> None:
        self.verbosity = verbosity
        self.recent_preview = recent_preview

    def format_summary(self, report: ListenerReport) -> str:
        stats = report.stats
        arrow = DOMINANCE_ARROWS[stats.dominance]
        return (
            f"[{report.state.value}] {arrow} {stats.dominance.value} | "
            f"buy {stats.buy_count} ({format_percent(stats.buy_share)}) / "
            f"sell {stats.sell_count} ({format_percent(stats.sell_share)}) | "
            f"analyzed {stats.total_analyzed}/{stats.total_observed} "
            f"({format_percent(stats.analysis_rate)}) | queued {report.buffered}"
        )

    def format(
        self,
        report: ListenerReport,
        *,
        blocks: Sequence[BlockSummary] = (),
    ) -> str:
        """Format a report into a human-readable message.

        Args:
            report: Snapshot from the pending transaction listener.
            blocks: Recent block summaries, newest first.

        Returns:
            Formatted text.
        """
        lines = [self.format_summary(report)]

        stats = report.stats
        if stats.total_observed and stats.analysis_rate < LOW_ANALYSIS_RATE_THRESHOLD:
            lines.append(
                f"  warning: only {format_percent(stats.analysis_rate)} of observed "
                "transactions analyzed; enrichment provider may be degraded"
            )

        if self.verbosity == "compact":
            return "\n".join(lines)

        recent = report.recent_transactions[: self.recent_preview]
        if recent:
            lines.append("  recent:")
            lines.extend(f"    {truncate_hash(tx_hash)}" for tx_hash in recent)

        if blocks:
            lines.append("  blocks:")
            for block in blocks[: self.recent_preview]:
                lines.append(
                    f"    #{block.number} {block.transaction_count} txs "
                    f"at {block.timestamp.isoformat(timespec='seconds')}"
                )

        return "\n".join(lines)

"""Tests for the sentiment report formatter."""

from __future__ import annotations

from datetime import UTC, datetime

from mempool_sentiment.ingestor.models import BlockSummary
from mempool_sentiment.listener import ListenerReport, ListenerState
from mempool_sentiment.reporting import SentimentReportFormatter, format_percent, truncate_hash
from mempool_sentiment.stats import StatsSnapshot

HASH = "0x" + "ab" * 32


def _report(**stats) -> ListenerReport:
    return ListenerReport(
        state=ListenerState.LISTENING,
        stats=StatsSnapshot(**stats),
        recent_transactions=(HASH,),
        buffered=3,
    )


class TestHelpers:
    def test_truncate_hash(self) -> None:
        assert truncate_hash(HASH) == "0xababab...ababab"
        assert truncate_hash("0x1234") == "0x1234"

    def test_format_percent(self) -> None:
        assert format_percent(0.0) == "0.0%"
        assert format_percent(0.6667) == "66.7%"


class TestSentimentReportFormatter:
    def test_compact_summary(self) -> None:
        report = _report(total_observed=20, total_analyzed=20, buy_count=6, sell_count=2)
        text = SentimentReportFormatter().format(report)

        assert text.startswith("[listening] ▲ BUY")
        assert "buy 6 (75.0%)" in text
        assert "sell 2 (25.0%)" in text
        assert "analyzed 20/20 (100.0%)" in text
        assert "queued 3" in text
        assert "\n" not in text

    def test_empty_report_is_neutral(self) -> None:
        text = SentimentReportFormatter().format(_report())
        assert "■ NEUTRAL" in text
        assert "warning" not in text

    def test_low_analysis_rate_warns(self) -> None:
        report = _report(total_observed=100, total_analyzed=10, buy_count=1, sell_count=1)
        text = SentimentReportFormatter().format(report)
        assert "warning: only 10.0%" in text

    def test_detailed_includes_recent_and_blocks(self) -> None:
        report = _report(total_observed=1, total_analyzed=1, sell_count=1)
        block = BlockSummary(
            number=19_000_000,
            transaction_count=150,
            timestamp=datetime(2024, 1, 1, tzinfo=UTC),
        )
        text = SentimentReportFormatter("detailed").format(report, blocks=[block])

        assert "▼ SELL" in text
        assert "recent:" in text
        assert truncate_hash(HASH) in text
        assert "#19000000 150 txs at 2024-01-01T00:00:00+00:00" in text

    def test_compact_omits_detail(self) -> None:
        text = SentimentReportFormatter("compact").format(_report(), blocks=[])
        assert "recent:" not in text

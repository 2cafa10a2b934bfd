"""Command-line entry point.

Usage:
    python -m mempool_sentiment run [--log-level DEBUG] [--detailed]
    python -m mempool_sentiment config
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys

from pydantic import ValidationError

from mempool_sentiment import __version__
from mempool_sentiment.config import Settings, get_settings
from mempool_sentiment.pipeline import Pipeline
from mempool_sentiment.reporting import SentimentReportFormatter

logger = logging.getLogger("mempool_sentiment")

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="mempool-sentiment",
        description="Classify pending Ethereum transactions into buy/sell pressure",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Listen to the mempool and log sentiment reports")
    run.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override LOG_LEVEL",
    )
    run.add_argument(
        "--detailed",
        action="store_true",
        help="Include recent transactions and blocks in each report",
    )

    subparsers.add_parser("config", help="Print the effective configuration (secrets redacted)")
    return parser


def configure_logging(level: int) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
    # websockets logs every frame at DEBUG
    logging.getLogger("websockets").setLevel(max(level, logging.INFO))


async def _run_pipeline(settings: Settings, *, detailed: bool) -> None:
    formatter = SentimentReportFormatter("detailed" if detailed else "compact")
    pipeline = Pipeline(settings, formatter=formatter)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on Windows event loops.
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, pipeline.request_stop)

    await pipeline.run()


def main(argv: list[str] | None = None) -> int:
    args = create_parser().parse_args(argv)

    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"Invalid configuration:\n{e}", file=sys.stderr)
        return 2

    if args.command == "config":
        print(json.dumps(settings.redacted_summary(), indent=2))
        return 0

    level = getattr(logging, args.log_level) if args.log_level else settings.get_logging_level()
    configure_logging(level)
    logger.info("Configuration: %s", settings.redacted_summary())

    try:
        asyncio.run(_run_pipeline(settings, detailed=args.detailed))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    return 0


if __name__ == "__main__":
    sys.exit(main())

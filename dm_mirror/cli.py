from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from dm_core.errors import BootstrapFailed, FeedUnavailable, InvalidArgument
from dm_core.throttle import ThrottleController
from dm_mirror import settings
from dm_mirror.exchange import BinanceAdapter
from dm_mirror.feed import MarketDataFeed
from dm_mirror.logging_config import setup_logging
from dm_mirror.mirror import OrderBookMirror
from dm_mirror.report import print_reporter

EXIT_OK = 0
EXIT_FEED = 1
EXIT_USAGE = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="depth-mirror",
        description="Mirror a Binance order book locally and print its top levels.",
    )
    parser.add_argument("symbol", nargs="?", default=settings.DEFAULT_SYMBOL, help="e.g. ETHUSDT")
    parser.add_argument(
        "depth", nargs="?", default=str(settings.DEFAULT_DEPTH), help="levels per side to print"
    )
    return parser


def parse_args(argv: Optional[List[str]] = None, adapter: Optional[BinanceAdapter] = None) -> tuple[str, int]:
    """Return (SYMBOL, DEPTH). Raises InvalidArgument."""
    adapter = adapter or BinanceAdapter()
    args = build_parser().parse_args(argv)
    return adapter.normalize_symbol(args.symbol), adapter.normalize_depth(args.depth)


def main(argv: Optional[List[str]] = None) -> int:
    adapter = BinanceAdapter()
    try:
        symbol, depth = parse_args(argv, adapter)
    except InvalidArgument as exc:
        print(f"depth-mirror: error: {exc}", file=sys.stderr)
        return EXIT_USAGE

    log_path = setup_logging(
        settings.LOG_LEVEL,
        component="mirror",
        subdir=symbol,
        base_dir=settings.LOG_DIR or None,
    )
    log = logging.getLogger("depth_mirror.cli")
    if log_path is not None:
        log.info("Logging to %s", log_path)
    log.info(
        "Mirror config symbol=%s stream=%s depth=%d throttle_ms=%d",
        symbol,
        adapter.stream_symbol(symbol),
        depth,
        settings.THROTTLE_INTERVAL_MS,
    )

    mirror = OrderBookMirror(
        MarketDataFeed(adapter=adapter),
        symbol,
        depth,
        reporter=print_reporter(depth),
        throttle=ThrottleController(settings.THROTTLE_INTERVAL_MS),
    )
    try:
        mirror.run()
    except (FeedUnavailable, BootstrapFailed) as exc:
        log.error("Fatal: %s", exc)
        return EXIT_FEED
    except KeyboardInterrupt:
        log.info("Interrupted; stopping")
        mirror.stop()
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())

#!/usr/bin/env python3
"""Market Watch - Main Entry Point.

Analyzes the watchlist on a schedule: indicators, support/resistance levels,
scored setups and chart pattern theses, with Telegram alerts for completed
thesis components.

Usage:
    python main.py
    python main.py --once
    python main.py --config config/config.json --symbols PLTR,TSLA
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from datetime import datetime
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables first
load_dotenv(override=True)

# Allow running from a checkout without installing
sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), "src"))

from market_watch.config import ConfigManager, ConfigValidationError
from market_watch.indicators import IndicatorEngine
from market_watch.notifications import TelegramNotifier
from market_watch.patterns import ThesisTracker
from market_watch.persistence import MarketStore, StoreError
from market_watch.pipeline import PipelineScheduler, SymbolAnalyzer

Path("logs").mkdir(exist_ok=True)

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s | %(levelname)-8s | %(name)-40s | %(message)s',
    datefmt='%H:%M:%S',
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler(f"logs/market_watch_{datetime.now():%Y%m%d_%H%M%S}.log"),
    ],
)
logger = logging.getLogger(__name__)
logging.getLogger("urllib3").setLevel(logging.WARNING)
logging.getLogger("requests").setLevel(logging.WARNING)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Market Watch pattern and setup scanner")
    parser.add_argument("--config", default=None, help="Path to JSON config (default config/config.json)")
    parser.add_argument("--once", action="store_true", help="Run a single pass and exit")
    parser.add_argument("--symbols", default=None, help="Comma separated symbols overriding the watchlist")
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    """Main entry point for the market watch pipeline."""
    args = parse_args(argv)

    logger.info("=" * 70)
    logger.info("🚀 MARKET WATCH")
    logger.info("=" * 70)

    # Load configuration
    try:
        config = ConfigManager(args.config).load()
        logger.info("✅ Configuration loaded and validated")
    except ConfigValidationError as e:
        logger.error(f"❌ Configuration error: {e}")
        return 1

    if args.symbols:
        config.scheduler.watchlist = [s.strip().upper() for s in args.symbols.split(",") if s.strip()]

    try:
        store = MarketStore(config.database_path)
    except StoreError as e:
        logger.error(f"❌ Database error: {e}")
        return 1

    notifier = TelegramNotifier(config.telegram)
    tracker = ThesisTracker(
        sink=notifier,
        breakout_volume_ratio=config.falling_wedge.breakout_volume_ratio,
    )
    analyzer = SymbolAnalyzer(config, store, tracker, IndicatorEngine(config.indicators))
    scheduler = PipelineScheduler(analyzer, tracker, store, config.scheduler)

    logger.info(f"   📋 Watchlist: {', '.join(config.scheduler.watchlist)}")
    logger.info(f"   ⏱️ Interval: {config.scheduler.interval_minutes}m")
    logger.info(f"   💾 Database: {config.database_path}")
    logger.info(f"   📣 Telegram: {'ENABLED' if config.telegram.enabled else 'DISABLED'}")

    if args.once:
        result = await scheduler.run_once()
        logger.info(f"👋 Single pass done: {result.success_count} ok, {len(result.errors)} failed")
        return 1 if result.errors else 0

    # Setup signal handlers
    def signal_handler(sig, frame):
        logger.info(f"👋 Received signal {sig}, initiating shutdown...")
        scheduler.stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    await scheduler.run_forever()
    logger.info("👋 Market Watch shutdown complete")
    return 0


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)

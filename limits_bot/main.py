#!/usr/bin/env python3
"""
Limits Bot - Main Entry Point.

Usage:
    python -m limits_bot.main [OPTIONS]

Options:
    --config     Config file path (default: config/settings.yaml)
    --log-level  Override logging level
    --dry-run    Show config and exit without polling

Examples:
    # Run with default config and .env secrets
    python -m limits_bot.main

    # Check configuration only
    python -m limits_bot.main --dry-run
"""

import argparse
import asyncio
import signal
import sys
from typing import List, Optional

import yaml
from dotenv import load_dotenv
from loguru import logger
from redis.exceptions import RedisError

from limits_bot.core.orchestrator import RequestOrchestrator
from limits_bot.core.validator import SymbolValidator
from limits_bot.data.cache import RedisCacheConfig, RedisResultCache, ResultCache
from limits_bot.data.markets import MarketRegistry
from limits_bot.data.orderbook import DepthAggregator
from limits_bot.exchange.binance_api import BinanceSpotAPI
from limits_bot.notifications.telegram_bot import TelegramBotController
from limits_bot.utils.config import (
    DEFAULT_CONFIG_PATH,
    AppSettings,
    apply_env_overrides,
    build_settings,
    load_config,
    print_config_summary,
)
from limits_bot.utils.logger import setup_logger


# =============================================================================
# Graceful Shutdown Handler
# =============================================================================

class GracefulShutdown:
    """Handle SIGTERM/SIGINT by setting an event the bot waits on."""

    def __init__(self):
        self._shutdown_event = asyncio.Event()
        self._is_shutting_down = False

    def trigger(self):
        """Trigger shutdown."""
        if self._is_shutting_down:
            logger.warning("Shutdown already in progress, forcing exit...")
            sys.exit(1)

        self._is_shutting_down = True
        logger.info("Graceful shutdown initiated...")
        self._shutdown_event.set()

    async def wait(self):
        """Wait for shutdown signal."""
        await self._shutdown_event.wait()


class LimitsBot:
    """
    Wires the components together and runs them.

    Runs the exchange info refresh loop and the Telegram poller side by side.
    """

    def __init__(self, settings: AppSettings):
        self.settings = settings

        self.api = BinanceSpotAPI(
            base_url=settings.exchange.base_url,
            timeout=settings.exchange.request_timeout,
            order_book_limit=settings.exchange.order_book_limit,
        )
        self.registry = MarketRegistry(self.api, settings.exchange.exchange_info_refresh)
        self.cache = self._create_cache()
        self.orchestrator = RequestOrchestrator(
            api=self.api,
            validator=SymbolValidator(self.registry, settings.analysis.excluded_assets),
            aggregator=DepthAggregator(
                top_n=settings.analysis.top_n,
                bucket_count=settings.analysis.bucket_count,
            ),
            cache=self.cache,
            max_depth_percent=settings.analysis.max_depth_percent,
        )
        self.telegram = TelegramBotController(
            settings.telegram,
            self.orchestrator,
            depth_options=settings.analysis.depth_options,
        )

        self._tasks: List[asyncio.Task] = []

    def _create_cache(self):
        cache = self.settings.cache
        if cache.redis_url:
            return RedisResultCache(RedisCacheConfig(url=cache.redis_url, ttl=cache.ttl))
        return ResultCache(ttl=cache.ttl, max_entries=cache.max_entries)

    async def start(self) -> None:
        """Start the bot."""
        logger.info("=" * 60)
        logger.info("LIMITS BOT")
        logger.info("=" * 60)

        await self.api.connect()
        if isinstance(self.cache, RedisResultCache):
            try:
                await self.cache.connect()
            except RedisError as e:
                logger.warning(f"Starting without Redis, results will not be cached until it is reachable: {e}")

        self._tasks = [
            asyncio.create_task(self.registry.run_periodic(), name="exchange-info"),
            asyncio.create_task(self.telegram.run(), name="telegram"),
        ]
        await asyncio.gather(*self._tasks)

    async def stop(self) -> None:
        """Stop the bot gracefully."""
        logger.info("Stopping bot...")

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)

        await self.api.close()
        if isinstance(self.cache, RedisResultCache):
            await self.cache.disconnect()

        logger.info(f"Final stats: {self.orchestrator.stats}")
        logger.info("Bot stopped")


def parse_args(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Limits Bot",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help=f"Config file path (default: {DEFAULT_CONFIG_PATH})",
    )

    parser.add_argument(
        "--log-level",
        help="Override logging level (DEBUG, INFO, WARNING, ERROR)",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show config and exit without polling",
    )

    return parser.parse_args(argv)


async def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    # Load environment
    load_dotenv()

    args = parse_args(argv)

    try:
        config = apply_env_overrides(load_config(args.config, required=False))
        settings = build_settings(config)
    except (ValueError, yaml.YAMLError) as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    setup_logger(
        level=args.log_level or settings.log_level,
        log_file=settings.log_file,
        secrets=[settings.telegram.bot_token],
    )
    print_config_summary(settings)

    if args.dry_run:
        logger.info("Dry run complete - exiting")
        return

    bot = LimitsBot(settings)
    shutdown_handler = GracefulShutdown()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown_handler.trigger)

    bot_task = asyncio.create_task(bot.start())
    shutdown_task = asyncio.create_task(shutdown_handler.wait())

    try:
        done, _ = await asyncio.wait(
            [bot_task, shutdown_task],
            return_when=asyncio.FIRST_COMPLETED,
        )
        if bot_task in done and bot_task.exception():
            logger.opt(exception=bot_task.exception()).error("Bot stopped with error")
    finally:
        shutdown_task.cancel()
        bot_task.cancel()
        await bot.stop()

    logger.info("Bot exited cleanly")


def run():
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()

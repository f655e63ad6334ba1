"""
CLI runner for budget-buddy.

Usage:
    python -m budget_buddy.run [OPTIONS]

    # Answer receipt photos over iMessage
    python -m budget_buddy.run --watch

    # Search for places
    python -m budget_buddy.run --search "coffee shops" --location "Austin, TX"

    # Find cheaper alternatives, with AI price comparison
    python -m budget_buddy.run --cheaper "grocery store" --location "Austin, TX" --ai

    # Analyze a receipt photo on disk
    python -m budget_buddy.run --receipt receipt.jpg
"""

import argparse
import asyncio
import contextlib
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from .config import BotConfig
from .dispatcher import MessageDispatcher
from .formatting import (
    format_alternatives_response,
    format_receipt_response,
    format_search_response,
)
from .gemini import GeminiClient
from .receipts import ReceiptAnalyzer
from .search import (
    WebSearchClient,
    find_cheaper_nearby_spots,
    find_cheaper_spots_with_ai,
    search_nearby_places,
    search_nearby_places_with_ai,
)
from .transport import IMessageTransport, TransportError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("budget-buddy")


def build_model(config: BotConfig) -> GeminiClient:
    """Create the Gemini client from config."""
    return GeminiClient(
        api_key=config.gemini.get_api_key(),
        model=config.gemini.model,
        api_base=config.gemini.api_base,
        timeout_seconds=config.gemini.timeout_seconds,
    )


def build_search_client(config: BotConfig) -> WebSearchClient:
    """Create the web search client from config."""
    return WebSearchClient(
        api_key=config.search.get_api_key(),
        api_base=config.search.api_base,
        search_path=config.search.search_path,
        timeout_seconds=config.search.timeout_seconds,
    )


async def run_bot(config: BotConfig, transport: IMessageTransport | None = None) -> None:
    """
    Watch iMessage and answer until cancelled.

    The transport is closed exactly once on the way out.
    """
    transport = transport or IMessageTransport(config.watcher)

    try:
        await transport.open()

        dispatcher = MessageDispatcher(
            transport,
            ReceiptAnalyzer(build_model(config)),
            max_concurrent=config.watcher.max_concurrent,
        )

        logger.info("Bot is running and listening for messages...")
        logger.info("Send a receipt image to process it!")

        watcher = transport.watch(on_error=lambda e: logger.error(f"Watcher error: {e}"))
        async with contextlib.aclosing(watcher) as source:
            await dispatcher.run(source)
    finally:
        logger.info("Shutting down...")
        transport.stop_watching()
        await transport.close()


async def run_search(config: BotConfig, query: str, location: str | None, use_ai: bool) -> str:
    """Run a nearby-places search and return the formatted reply."""
    provider = build_search_client(config)
    if use_ai:
        outcome = await search_nearby_places_with_ai(
            provider, build_model(config), query, location, config.search.max_results
        )
    else:
        outcome = await search_nearby_places(provider, query, location, config.search.max_results)
    return format_search_response(outcome)


async def run_cheaper(config: BotConfig, query: str, location: str, use_ai: bool) -> str:
    """Run a cheaper-alternatives search and return the formatted reply."""
    provider = build_search_client(config)
    if use_ai:
        outcome = await find_cheaper_spots_with_ai(
            provider, build_model(config), query, location, config.search.max_results
        )
    else:
        outcome = await find_cheaper_nearby_spots(
            provider, query, location, config.search.max_results
        )
    return format_alternatives_response(outcome)


async def run_receipt(config: BotConfig, path: Path) -> tuple[str, str]:
    """Analyze a receipt image on disk. Returns (reply text, JSON)."""
    analysis = await ReceiptAnalyzer(build_model(config)).analyze_file(path)
    return format_receipt_response(analysis), analysis.to_json()


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="budget-buddy: receipt and nearby-spot assistant for iMessage",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Answer receipt photos over iMessage
    python -m budget_buddy.run --watch

    # Search for places near a location
    python -m budget_buddy.run --search "pizza places" --location "Chicago"

    # Cheaper grocery stores, ranked by affordability
    python -m budget_buddy.run --cheaper "grocery store" --location "Chicago"

    # Use a specific config file
    python -m budget_buddy.run --config budget_buddy.yaml --watch
        """,
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=Path("budget_buddy.yaml"),
        help="Path to config file (default: budget_buddy.yaml)",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--watch",
        action="store_true",
        help="Watch iMessage and reply to incoming messages",
    )
    mode.add_argument(
        "--search",
        metavar="QUERY",
        help="Search for places matching a natural-language query",
    )
    mode.add_argument(
        "--cheaper",
        metavar="QUERY",
        help="Find cheaper alternatives of a kind of place (needs --location)",
    )
    mode.add_argument(
        "--receipt",
        type=Path,
        metavar="PATH",
        help="Analyze a receipt image file",
    )
    parser.add_argument(
        "--location",
        type=str,
        help="Location to search near",
    )
    parser.add_argument(
        "--ai",
        action="store_true",
        help="Let the model refine search results",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    # API keys and overrides may live in a .env file
    load_dotenv()

    config = BotConfig.from_yaml(args.config).apply_env()
    logger.debug(f"Config: {config.to_dict()}")

    if args.search:
        print(asyncio.run(run_search(config, args.search, args.location, args.ai)))
        return 0

    if args.cheaper:
        if not args.location:
            parser.error("--cheaper requires --location")
        print(asyncio.run(run_cheaper(config, args.cheaper, args.location, args.ai)))
        return 0

    if args.receipt:
        text, as_json = asyncio.run(run_receipt(config, args.receipt))
        print(text)
        print(as_json)
        return 0

    if args.watch:
        logger.info(f"Chat database: {config.watcher.resolved_chat_db()}")
        logger.info(
            f"Polling every {config.watcher.poll_interval_seconds}s, "
            f"max {config.watcher.max_concurrent} concurrent"
        )
        try:
            asyncio.run(run_bot(config))
        except TransportError as e:
            logger.error(f"Could not start messaging transport: {e}")
            return 1
        except KeyboardInterrupt:
            logger.info("Bot stopped by user")
        return 0

    # Default: show help
    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())

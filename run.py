#!/usr/bin/env python3
"""
Quote Relay - rate-budgeted market data fan-out

Usage:
    python run.py                # Start relay on $PORT (default 3000)
    python run.py -p 8080        # Start relay on a custom port
    python run.py --host 127.0.0.1  # Bind to localhost only
    python run.py --help         # Show all options

Requires TWELVE_DATA_KEY in the environment or .env.
"""

import argparse
import sys

from core.config import ConfigError, settings
from core.logging_utils import get_logger, setup_logging


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog='quote-relay',
        description='Quote Relay - one upstream feed, many live subscribers',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run.py              Start relay on the configured port
  python run.py -p 8080      Start relay on a custom port
"""
    )

    parser.add_argument('--host', type=str, default=settings.host,
                        help=f'Bind host (default: {settings.host})')
    parser.add_argument('-p', '--port', type=int, default=settings.port,
                        help=f'Listen port (default: {settings.port})')
    parser.add_argument('--log-level', type=str, default=settings.log_level,
                        help=f'Log level (default: {settings.log_level})')

    args = parser.parse_args(argv)

    setup_logging(args.log_level)
    logger = get_logger("quote_relay")

    try:
        settings.validate_startup()
    except ConfigError as e:
        logger.error("[CONFIG] %s", e)
        return 1

    from core.feed import FeedService
    from ui.web_server import run_server, set_feed

    set_feed(FeedService(settings))
    logger.info("[WEB] %s relay on port %s", settings.symbol, args.port)
    run_server(host=args.host, port=args.port)
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""Command line entry point.

Usage:
    cortexbot config.json
    cortexbot config.json --debug
    cortexbot config.json --set-username

Logs are written to ~/.cortexbot/debug.log unless --log-file is given.
"""

import argparse
import logging
import signal
import sys
import traceback
from datetime import datetime
from typing import Optional

import redis
import socketio

from cortexbot import __version__
from cortexbot.app import App
from cortexbot.log_utils import configure_logging
from cortexbot.settings import ConfigError, load_config

logger = logging.getLogger(__name__)

# Exit status for configuration or startup failures
EXIT_FATAL = 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cortexbot",
        description="Generals.io bot client coordinated over a Redis bus",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  cortexbot config.json
  cortexbot config.json --debug --log-file ./bot.log

Environment variables:
  GENERALS_USER_ID   Overrides gameConfig.userId
  REDIS_HOST, REDIS_PORT, REDIS_USERNAME, REDIS_PASSWORD
                     Override redisConfig values

Exit status: 0 clean, 1 startup error, 3 server disconnect,
15 another instance is using the same userId.
        """,
    )

    parser.add_argument("config", help="Path to the JSON config file")

    parser.add_argument(
        "--debug", "-d",
        action="store_true",
        help="Show debug messages on the console",
    )

    parser.add_argument(
        "--set-username", "-s",
        dest="set_username",
        action="store_true",
        help="Set the configured username on the game server after connecting",
    )

    parser.add_argument(
        "--log-file",
        help="Debug log path (default: ~/.cortexbot/debug.log)",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Run the bot until it is told to stop.

    Returns:
        The process exit status.
    """
    args = build_parser().parse_args(argv)
    log_path = configure_logging(debug=args.debug, log_file=args.log_file)

    logger.info("=" * 60)
    logger.info(f"CORTEXBOT {__version__} STARTING")
    logger.debug(f"Time: {datetime.now().isoformat()}")
    logger.debug(f"Python: {sys.version}")
    logger.debug(f"Debug log: {log_path}")
    logger.info("=" * 60)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        logger.error(f"{e}")
        return EXIT_FATAL
    if args.set_username:
        config.game.set_username = True

    app = App(config)

    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}, shutting down...")
        app.shutdown(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        app.start()
    except (redis.RedisError, socketio.exceptions.ConnectionError) as e:
        logger.error(f"Startup failed: {e}")
        logger.debug(traceback.format_exc())
        app.quit()
        return EXIT_FATAL

    # Wake up periodically so signals are handled promptly
    exit_code = None
    while exit_code is None:
        exit_code = app.wait(timeout=1.0)

    app.quit()
    logger.info(f"Exiting with status {exit_code}")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())

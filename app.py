"""
Command-line entrypoint.

    python app.py TWITTER_CONFIG BOT_CONFIG            # live mode
    python app.py -test BOT_CONFIG [SCRIPT ...]        # test mode
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence

from dotenv import load_dotenv

from config import get_settings
from shellgei_bot.bot_config import ConfigError
from shellgei_bot.logging_config import configure_logging
from shellgei_bot.runner import FatalStartupError, run_live, run_test

logger = logging.getLogger(__name__)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments; exits with status 2 on usage errors."""
    parser = argparse.ArgumentParser(
        description="Run scripts posted with a trigger tag and reply with their output.",
        usage="%(prog)s TWITTER_CONFIG BOT_CONFIG | -test BOT_CONFIG [SCRIPT ...]",
    )
    parser.add_argument(
        "-test",
        "--test",
        dest="test_config",
        metavar="BOT_CONFIG",
        help="Test mode: run SCRIPT files and print a report instead of going live",
    )
    parser.add_argument(
        "paths",
        nargs="*",
        help="TWITTER_CONFIG BOT_CONFIG in live mode, SCRIPT files in test mode",
    )
    args = parser.parse_args(argv)

    if args.test_config is None and len(args.paths) != 2:
        parser.error("live mode needs TWITTER_CONFIG and BOT_CONFIG")
    return args


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point. Returns the process exit status."""
    args = parse_args(argv)

    load_dotenv()
    settings = get_settings()
    test_mode = args.test_config is not None
    configure_logging(
        settings.log_file,
        settings.log_level,
        console_stream=sys.stderr if test_mode else None,
    )

    try:
        if test_mode:
            asyncio.run(run_test(args.test_config, args.paths, settings))
        else:
            logger.info("Starting live mode...")
            asyncio.run(run_live(args.paths[0], args.paths[1], settings))
    except (FatalStartupError, ConfigError) as exc:
        logger.critical("Fatal: %s", exc)
        return 1
    except KeyboardInterrupt:
        logger.info("Shutdown signal received - shutting down gracefully...")
    finally:
        logging.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())

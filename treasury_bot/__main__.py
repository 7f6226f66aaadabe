from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Optional, Sequence

from treasury_bot.common.config import ConfigError, load_config
from treasury_bot.common.logging import default_service_name, init_structured_logging, log_event
from treasury_bot.driver import run_bot

logger = logging.getLogger("treasury_bot")

EXIT_CONFIG_ERROR = 2


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="treasury-bot",
        description="Collect token tax, buy and relist the target NFT, buy back and burn the token.",
    )
    parser.add_argument("--once", action="store_true", help="Run a single tick and exit.")
    parser.add_argument(
        "--no-dotenv",
        action="store_true",
        help="Do not load a .env file from the working directory.",
    )
    args = parser.parse_args(argv)

    try:
        config = load_config(dotenv=not args.no_dotenv)
    except ConfigError as e:
        init_structured_logging(service=default_service_name())
        log_event(logger, "bot.config_invalid", severity="ERROR", error=str(e))
        return EXIT_CONFIG_ERROR

    init_structured_logging(service=default_service_name(), level=config.log_level)

    try:
        asyncio.run(run_bot(config, max_ticks=1 if args.once else None))
    except KeyboardInterrupt:
        pass
    except Exception:
        logger.exception("bot.failed")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

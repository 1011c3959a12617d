"""
Command-line entry point
"""

import argparse
import asyncio
import signal
import sys

from mirrorbot.core.config import ConfigurationManager
from mirrorbot.core.copy_bot import MirrorBot
from mirrorbot.core.errors import ConfigurationError
from mirrorbot.core.logger import get_logger, setup_logging


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Mirror a Solana wallet's Jupiter and Raydium trades"
    )
    parser.add_argument("--config", default="config/config.yml", help="Path to config.yml")
    parser.add_argument("--log-level", default=None, help="Override logging.level from the config")
    return parser.parse_args(argv)


async def run(bot: MirrorBot) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(bot.stop()))
        except NotImplementedError:
            # Windows event loops have no signal handlers
            pass

    try:
        await bot.start()
    finally:
        await bot.stop()


def main(argv=None) -> int:
    args = parse_args(argv)

    try:
        config = ConfigurationManager(args.config).load_config()
    except FileNotFoundError as e:
        print(str(e))
        print("Copy config/config.example.yml to config/config.yml and fill in your wallet and RPC settings")
        return 1
    except ConfigurationError as e:
        print(f"Invalid configuration: {e}")
        return 1

    setup_logging(
        level=args.log_level or config.logging.level,
        format=config.logging.format,
        output_file=config.logging.output_file
    )
    logger = get_logger(__name__)

    try:
        bot = MirrorBot.from_config(config)
    except ConfigurationError as e:
        logger.error("bot_configuration_invalid", error=str(e))
        return 1

    try:
        asyncio.run(run(bot))
    except KeyboardInterrupt:
        print("\nGoodbye!")
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""Command-line entry point for chat-triage."""

import argparse
import asyncio
import logging
import os
import sys

from dotenv import load_dotenv
from pydantic import SecretStr

from chat_triage.config import Config, load_config
from chat_triage.core.logging import set_ai_debug
from chat_triage.orchestrator import Orchestrator

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "aiohttp.access", "anthropic", "uvicorn.access")


def setup_logging(debug: bool = False) -> None:
    """Configure root logging for the process."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def load_api_keys_from_env(config: Config) -> Config:
    """Fall back to ANTHROPIC_API_KEY when the config has no key."""
    if config.responder.anthropic_api_key is None:
        key = os.getenv("ANTHROPIC_API_KEY")
        if key:
            config.responder.anthropic_api_key = SecretStr(key)
    return config


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="chat-triage",
        description="Prioritised AI replies to Twitch chat and X mentions",
    )
    parser.add_argument("-c", "--config", default=None, help="YAML config file (default: ./config.yaml)")
    parser.add_argument("-d", "--debug", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--debug-ai",
        action="store_true",
        help="Log full prompts and responses for every LLM call",
    )
    return parser.parse_args(argv)


async def async_main(config_path: str | None = None, debug: bool = False, debug_ai: bool = False) -> None:
    setup_logging(debug)
    logger = logging.getLogger(__name__)

    load_dotenv()
    config = load_api_keys_from_env(load_config(config_path))

    if debug_ai:
        set_ai_debug(True)
        logger.info("AI debug logging enabled")

    enabled = [
        f"twitch #{config.twitch.channel or '?'}" if config.twitch.enabled else None,
        f"x @{config.x.bot_username or '?'}" if config.x.enabled else None,
    ]
    logger.info(
        f"Starting chat-triage: platforms={', '.join(p for p in enabled if p) or 'none'} "
        f"cost_control={config.triage.subscribers_and_donations_only}"
    )

    orchestrator = Orchestrator(config)
    try:
        await orchestrator.run_forever()
    except asyncio.CancelledError:
        logger.info("Shutting down...")
    except Exception:
        logger.exception("Fatal error")
        sys.exit(1)
    finally:
        await orchestrator.stop()


def main() -> None:
    args = parse_args()
    try:
        asyncio.run(async_main(args.config, args.debug, args.debug_ai))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()

"""
main.py — discord-runner Entry Point

Usage:
    python -m discord_runner                          # default settings
    python -m discord_runner --log-level DEBUG        # verbose logging
    python -m discord_runner --config path/to/config.yaml

Starts the gateway runner and, when DISCORD_BOT_TOKEN is set, the bundled
link-rewriter bot on top of it.
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from dotenv import load_dotenv


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="discord-runner",
        description="discord-runner — shared Discord gateway session runner",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $DISCORD_RUNNER_CONFIG or config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override log level from config",
    )
    parser.add_argument(
        "--no-bot",
        action="store_true",
        default=False,
        help="Run the runner alone, without the link-rewriter bot",
    )
    return parser.parse_args(argv)


def bootstrap(args: argparse.Namespace):
    """
    Load config, validate it fully, and set up logging.
    Returns (settings, log) ready for use.

    Exits with code 1 (after printing a clear message) if:
      - config.yaml has invalid values (Pydantic ValidationError)
      - cross-field problems are found (ConfigError from validate_all())
    """
    from pydantic import ValidationError

    from discord_runner.config.settings import ConfigError, load_settings
    from discord_runner.observability.logger import get_logger, setup_logging

    # -- Load and parse -------------------------------------------------------
    try:
        settings = load_settings(args.config)
    except ValidationError as exc:
        problems = "\n".join(
            f"  • {'.'.join(str(p) for p in e['loc']) or '?'}: {e['msg']}"
            for e in exc.errors()
        )
        print(
            f"\n❌  Config validation failed:\n\n{problems}\n\n"
            f"    Fix config/config.yaml or your .env file and restart.\n",
            file=sys.stderr,
        )
        sys.exit(1)
    except (OSError, ValueError) as exc:
        print(f"\n❌  Failed to load config: {type(exc).__name__}: {exc}\n", file=sys.stderr)
        sys.exit(1)

    # -- Cross-field validation -----------------------------------------------
    try:
        settings.validate_all()
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    # -- Logging --------------------------------------------------------------
    setup_logging(settings.logging, level=args.log_level)

    log = get_logger("discord_runner.main")
    return settings, log


async def run(settings, log, with_bot: bool = True) -> int:
    from discord_runner.bots.link_rewriter import LinkRewriterBot
    from discord_runner.exceptions import StateLoadError
    from discord_runner.runner.capabilities import AsyncioTimer, FileStateStore, LocalMessenger
    from discord_runner.runner.client import RunnerClient
    from discord_runner.runner.http_client import HttpxTransport
    from discord_runner.runner.runner import GatewayRunner
    from discord_runner.runner.session import BotIdentity
    from discord_runner.runner.transport import WebSocketTransport

    inbox: asyncio.Queue = asyncio.Queue()
    transport = WebSocketTransport(
        inbox,
        open_timeout=settings.gateway.open_timeout_seconds,
        max_size=settings.gateway.max_frame_bytes,
    )
    timer = AsyncioTimer(inbox)
    messenger = LocalMessenger()
    http = HttpxTransport(timeout=settings.http.timeout_seconds)
    runner = GatewayRunner.from_settings(
        settings, inbox, transport, timer, FileStateStore(settings.state_path), messenger, http,
    )

    try:
        await runner.start()
    except StateLoadError as e:
        log.error("discord_runner.startup_failed", reason="state_load", error=str(e))
        print(f"\n❌  {e}\n    Remove or repair {settings.state_path} and restart.\n", file=sys.stderr)
        await http.aclose()
        return 1

    tasks = [asyncio.create_task(runner.run(), name="runner")]
    if with_bot and settings.discord_bot_token:
        identity = BotIdentity(token=settings.discord_bot_token, intents=settings.discord_intents)
        bot = LinkRewriterBot(RunnerClient(runner, messenger, "link-rewriter"), identity)
        tasks.append(asyncio.create_task(bot.run(), name="link-rewriter"))
    elif with_bot:
        log.warning("discord_runner.no_token", hint="Set DISCORD_BOT_TOKEN to start the link-rewriter bot")

    log.info("discord_runner.running", gateway=settings.gateway.url, sessions=runner.registry.count)
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        for task in done:
            task.result()
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await runner.stop()
        timer.cancel_all()
        await transport.close_all()
        await http.aclose()
        log.info("discord_runner.shutdown")
    return 0


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = parse_args(argv)
    settings, log = bootstrap(args)
    log.info("discord_runner.starting", config=args.config, reconnect=settings.reconnect.enabled)
    try:
        return asyncio.run(run(settings, log, with_bot=not args.no_bot))
    except KeyboardInterrupt:
        log.info("discord_runner.interrupted")
        return 0


if __name__ == "__main__":
    sys.exit(main())

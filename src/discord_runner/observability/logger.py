"""
observability/logger.py — discord-runner Structured Logger

Every log line goes to a rotating JSON file; the console gets the same events
rendered for humans, or as JSON when logging.json_format is set. Lines handled
inside the control loop also carry the channel id and bot fingerprint.

Usage:
    from discord_runner.observability.logger import get_logger, setup_logging
    from discord_runner.config.settings import get_settings

    setup_logging(get_settings().logging)         # call once at startup
    log = get_logger(__name__)
    log.info("runner.connect", owner="link-rewriter")
    log.warning("heartbeat.send_failed", error="closed")
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, Optional

import structlog

from discord_runner.config.settings import LoggingConfig

LOG_FILE_NAME = "discord_runner.log"

# Processors every event passes through before a handler renders it
_SHARED_PROCESSORS: list[Any] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
]


def _formatter(renderer: Any) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=_SHARED_PROCESSORS,
    )


def setup_logging(config: LoggingConfig, level: Optional[str] = None) -> Path:
    """
    Configure structlog and stdlib logging from the `logging:` config section.

    Args:
        config: Log level, directory, rotation, console and format options.
        level:  Overrides config.level (the --log-level flag).

    Returns the path of the JSON log file.
    """
    log_dir = Path(config.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME
    numeric_level = getattr(logging, (level or config.level).upper(), logging.INFO)

    # ── File: always JSON, one event per line ───────────────────────────────
    file_handler = logging.handlers.RotatingFileHandler(
        filename=log_file,
        maxBytes=config.max_file_size_mb * 1024 * 1024,
        backupCount=config.backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(numeric_level)
    file_handler.setFormatter(_formatter(structlog.processors.JSONRenderer()))
    handlers: list[logging.Handler] = [file_handler]

    # ── Console: pretty in dev, JSON when asked ─────────────────────────────
    if config.console_output:
        console_renderer = (
            structlog.processors.JSONRenderer()
            if config.json_format
            else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
        )
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(_formatter(console_renderer))
        handlers.append(console_handler)

    logging.basicConfig(level=numeric_level, handlers=handlers, force=True)

    # websockets logs every frame at DEBUG; keep it at our level or quieter
    logging.getLogger("websockets").setLevel(max(numeric_level, logging.INFO))

    structlog.configure(
        processors=_SHARED_PROCESSORS + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    return log_file


def get_logger(name: str = "discord_runner", **initial_values: Any) -> structlog.stdlib.BoundLogger:
    """
    Get a bound logger with optional initial context values.

    Example:
        log = get_logger(__name__, component="heartbeat")
        log.info("heartbeat.sent", seq=42)
    """
    logger = structlog.get_logger(name)
    if initial_values:
        logger = logger.bind(**initial_values)
    return logger


def bind_bot(channel_id: int, bot: str) -> None:
    """
    Bind the session being handled to every log call in this async context.

    The runner calls this before feeding an item to the state machine so that
    codec, state machine and heartbeat lines all carry the channel and the
    bot fingerprint without passing them explicitly.
    """
    structlog.contextvars.bind_contextvars(channel_id=channel_id, bot=bot)


def clear_bot() -> None:
    """Clear bot context vars once the inbound item has been handled."""
    structlog.contextvars.clear_contextvars()

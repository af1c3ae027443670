"""
config/settings.py — discord-runner Runtime Settings

Merges config.yaml (defaults/structure) with .env (secrets).
Pydantic-powered — all fields are validated and typed.

  - GatewayConfig rejects non-WebSocket gateway URLs at parse time
  - HeartbeatConfig / ReconnectConfig bound their timing fields
  - validate_all() performs cross-field startup validation and raises
    ConfigError with a clear, human-readable message listing every problem
  - load_settings() respects DISCORD_RUNNER_CONFIG as a fallback when no
    explicit config_path argument is given
"""

from __future__ import annotations

import os
import threading as _threading
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# ─────────────────────────────────────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────────────────────────────────────

class ConfigError(Exception):
    """Raised by validate_all() when one or more config problems are found."""


_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

DISCORD_GATEWAY = "wss://gateway.discord.gg/?v=9&encoding=json"
DISCORD_HTTP_URL = "https://discord.com/api/v9"


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class IdentifyConfig(BaseModel):
    """Client metadata sent in every Identify frame."""
    os: str = "linux"
    browser: str = "discord-runner"
    device: str = "discord-runner"
    large_threshold: int = 50
    compress: bool = False

    @field_validator("large_threshold")
    @classmethod
    def _valid_threshold(cls, v: int) -> int:
        if not (50 <= v <= 250):
            raise ValueError("gateway.identify.large_threshold must be between 50 and 250")
        return v


class GatewayConfig(BaseModel):
    url: str = DISCORD_GATEWAY
    open_timeout_seconds: float = 10.0
    max_frame_bytes: int = 2**22
    identify: IdentifyConfig = Field(default_factory=IdentifyConfig)

    @field_validator("url")
    @classmethod
    def _websocket_url(cls, v: str) -> str:
        if not v.startswith(("ws://", "wss://")):
            raise ValueError(f"gateway.url must start with ws:// or wss://, got '{v}'")
        return v

    @field_validator("open_timeout_seconds")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("gateway.open_timeout_seconds must be > 0")
        return v


class HeartbeatConfig(BaseModel):
    # First beat fires this many ms before the negotiated interval elapses
    lead_ms: int = 1000
    ack_watchdog: bool = False

    @field_validator("lead_ms")
    @classmethod
    def _non_negative_lead(cls, v: int) -> int:
        if v < 0:
            raise ValueError("heartbeat.lead_ms must be >= 0")
        return v


class ReconnectConfig(BaseModel):
    """Reconnect policy layered over the state machine. Off unless enabled."""
    enabled: bool = False
    max_attempts: int = 5
    delay_ms: int = 5000

    @field_validator("max_attempts")
    @classmethod
    def _positive_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("reconnect.max_attempts must be >= 1")
        return v

    @field_validator("delay_ms")
    @classmethod
    def _non_negative_delay(cls, v: int) -> int:
        if v < 0:
            raise ValueError("reconnect.delay_ms must be >= 0")
        return v


class HttpConfig(BaseModel):
    base_url: str = DISCORD_HTTP_URL
    user_agent_url: str = "https://github.com/discord-runner/discord-runner"
    user_agent_version: str = "1.0"
    timeout_seconds: float = 15.0

    @field_validator("base_url")
    @classmethod
    def _http_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"http.base_url must start with http:// or https://, got '{v}'")
        return v.rstrip("/")


class StateConfig(BaseModel):
    path: str = "./data/state/runner.json"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: str = "./data/logs"
    max_file_size_mb: int = 50
    backup_count: int = 5
    console_output: bool = True
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_LOG_LEVELS)}"
            )
        return upper


# ─────────────────────────────────────────────────────────────────────────────
# Root Settings
# ─────────────────────────────────────────────────────────────────────────────

class Settings(BaseSettings):
    """
    discord-runner runtime settings.

    Priority (highest to lowest):
      1. config.yaml sections (load_settings passes them as init kwargs)
      2. Environment variables, nested fields as SECTION__FIELD
      3. .env file
      4. Field defaults

    A section present in config.yaml wins over environment variables for the
    same fields; the environment only fills what the file leaves out.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    # -- Secrets from .env ---------------------------------------------------
    discord_bot_token: Optional[str] = Field(default=None, alias="DISCORD_BOT_TOKEN")
    # GUILD_MESSAGES (512) | MESSAGE_CONTENT (32768)
    discord_intents: int = Field(default=33280, alias="DISCORD_INTENTS")

    # -- Structured config (from config.yaml) --------------------------------
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    heartbeat: HeartbeatConfig = Field(default_factory=HeartbeatConfig)
    reconnect: ReconnectConfig = Field(default_factory=ReconnectConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    state: StateConfig = Field(default_factory=StateConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("discord_bot_token", mode="before")
    @classmethod
    def _blank_token_is_none(cls, v: Any) -> Optional[str]:
        if v in (None, "", "null"):
            return None
        return str(v).strip()

    @field_validator("discord_intents", mode="before")
    @classmethod
    def _coerce_intents(cls, v: Any) -> int:
        if v in (None, ""):
            return 33280
        return int(v)

    @field_validator("gateway", mode="before")
    @classmethod
    def _coerce_gateway(cls, v: Any) -> Any:
        return GatewayConfig(**v) if isinstance(v, dict) else v

    @field_validator("heartbeat", mode="before")
    @classmethod
    def _coerce_heartbeat(cls, v: Any) -> Any:
        return HeartbeatConfig(**v) if isinstance(v, dict) else v

    @field_validator("reconnect", mode="before")
    @classmethod
    def _coerce_reconnect(cls, v: Any) -> Any:
        return ReconnectConfig(**v) if isinstance(v, dict) else v

    @field_validator("http", mode="before")
    @classmethod
    def _coerce_http(cls, v: Any) -> Any:
        return HttpConfig(**v) if isinstance(v, dict) else v

    @field_validator("state", mode="before")
    @classmethod
    def _coerce_state(cls, v: Any) -> Any:
        return StateConfig(**v) if isinstance(v, dict) else v

    @field_validator("logging", mode="before")
    @classmethod
    def _coerce_logging(cls, v: Any) -> Any:
        return LoggingConfig(**v) if isinstance(v, dict) else v

    # -- Convenience properties ----------------------------------------------

    @property
    def log_level(self) -> str:
        return self.logging.level.upper()

    @property
    def log_dir(self) -> Path:
        return Path(self.logging.log_dir)

    @property
    def state_path(self) -> Path:
        return Path(self.state.path)

    @property
    def user_agent(self) -> str:
        return f"DiscordBot ({self.http.user_agent_url}, {self.http.user_agent_version})"

    def validate_all(self) -> None:
        """
        Full startup validation. Raises ConfigError listing every problem found.

        Pydantic field validators catch type/value errors at parse time; this
        method catches cross-field problems that Pydantic can't see.
        """
        errors: list[str] = []

        # ── Heartbeat lead must leave room before the ack watchdog fires ────
        if self.heartbeat.ack_watchdog and self.heartbeat.lead_ms >= 10_000:
            errors.append(
                "heartbeat.lead_ms is 10s or more while heartbeat.ack_watchdog "
                "is enabled; the watchdog would see every first beat as late."
            )

        # ── Reconnect delay sanity ──────────────────────────────────────────
        if self.reconnect.enabled and self.reconnect.delay_ms < 1000:
            errors.append(
                "reconnect.delay_ms must be at least 1000 when reconnect.enabled "
                "is true; the gateway rate-limits rapid identify attempts."
            )

        # ── Intents must be a non-negative bitfield ─────────────────────────
        if self.discord_intents < 0:
            errors.append("DISCORD_INTENTS must be a non-negative integer bitfield.")

        # ── State path must not be a directory ──────────────────────────────
        if self.state_path.exists() and self.state_path.is_dir():
            errors.append(
                f"state.path '{self.state.path}' is a directory; point it at a file."
            )

        # ── Report all errors together ───────────────────────────────────────
        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigError(
                f"\n\ndiscord-runner startup failed — {len(errors)} configuration "
                f"problem(s) found:\n\n{numbered}\n\n"
                f"Fix the issues above in config/config.yaml or your .env file "
                f"and restart.\n"
            )


# ─────────────────────────────────────────────────────────────────────────────
# Loader + singleton
# ─────────────────────────────────────────────────────────────────────────────

_singleton: Optional[Settings] = None
_singleton_lock = _threading.Lock()

_KNOWN_SECTIONS = {"gateway", "heartbeat", "reconnect", "http", "state", "logging"}


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument (from --config CLI flag)
      2. DISCORD_RUNNER_CONFIG environment variable
      3. Default: config/config.yaml
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get("DISCORD_RUNNER_CONFIG")
    if env_path:
        return Path(env_path)
    return Path("config/config.yaml")


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings by merging config.yaml with environment variables."""
    global _singleton
    resolved_path = _resolve_config_path(config_path)
    yaml_data = _load_yaml(resolved_path)

    init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}

    instance = Settings(**init_kwargs)
    with _singleton_lock:
        _singleton = instance
    return instance


def get_settings() -> Settings:
    """
    Return the global Settings singleton, loading it from the default
    config path on first use.
    """
    global _singleton
    if _singleton is not None:
        return _singleton
    with _singleton_lock:
        if _singleton is None:
            _singleton = Settings(
                **{k: v for k, v in _load_yaml(_resolve_config_path(None)).items()
                   if k in _KNOWN_SECTIONS}
            )
    return _singleton

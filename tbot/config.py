"""Configuration for tbot.

ServerConfig is an explicit, validated record: every option the server
understands is a named field with a description, checked on
construction. load_config() fills it from a config directory holding
``settings.yaml`` and ``.env``; the TBOT_TOKEN and TBOT_API_URL
environment variables take precedence over the file.

Key classes:
    ServerConfig: Top-level server settings.
    LoggingSettings: Log level, directory and rotation.
    RateLimitSettings: Per-chat rate limiting.

Key functions:
    load_config: Build a ServerConfig from a config directory.
"""

import os
from pathlib import Path
from typing import Dict, List, Optional

import structlog
import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from .adapter import TELEGRAM_API_URL
from .exceptions import ConfigurationError

logger = structlog.get_logger("tbot.config")

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class LoggingSettings(BaseModel):
    """Logging options consumed by setup_logging()."""

    level: str = Field(default="INFO", description="Console and combined file level")
    log_dir: Optional[Path] = Field(
        default=None, description="Directory for rotating log files; None = console only"
    )
    subsystem_levels: Dict[str, str] = Field(
        default_factory=dict, description='Per-subsystem overrides, e.g. {"mux": "DEBUG"}'
    )
    max_file_size_mb: int = Field(default=10, ge=1)
    backup_count: int = Field(default=5, ge=0)

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        value = value.upper()
        if value not in _LOG_LEVELS:
            raise ValueError(f"unknown log level {value!r}")
        return value


class RateLimitSettings(BaseModel):
    """Sliding-window per-chat rate limit."""

    enabled: bool = False
    max_requests: int = Field(default=30, ge=1, description="Requests per window")
    window_seconds: float = Field(default=60, gt=0)


class ServerConfig(BaseModel):
    """Settings for a tbot Server."""

    token: str = Field(..., min_length=1, description="Bot API token")
    api_url: str = Field(default=TELEGRAM_API_URL, description="Bot API base URL")
    poll_timeout: int = Field(default=30, ge=0, description="Long-poll timeout (s)")
    max_poll_failures: int = Field(
        default=5, ge=1, description="Consecutive poll failures before giving up"
    )
    request_timeout: float = Field(
        default=30.0, gt=0, description="Total timeout for send and other API calls (s)"
    )
    max_concurrency: Optional[int] = Field(
        default=None, ge=1, description="Bound on concurrently running handlers"
    )
    drain_timeout: Optional[float] = Field(
        default=10.0, ge=0, description="Seconds to wait for in-flight handlers on shutdown"
    )
    help_path: Optional[str] = Field(
        default="/help", description="Path of the built-in help handler; None disables it"
    )
    allowed_chat_ids: List[int] = Field(
        default_factory=list, description="If non-empty, only these chats are served"
    )
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("token")
    @classmethod
    def _strip_token(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("token must not be blank")
        return value

    @field_validator("help_path")
    @classmethod
    def _single_token_path(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and (not value or len(value.split()) != 1):
            raise ValueError("help_path must be a single non-empty token")
        return value


def _load_yaml(path: Path) -> dict:
    """Load a YAML mapping, or {} if the file is missing or empty."""
    if not path.exists():
        return {}
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Cannot parse {path.name}: {e}", setting_name=path.name
        ) from e
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"{path.name} must contain a mapping", setting_name=path.name
        )
    return data


def load_config(config_dir: Optional[Path] = None) -> ServerConfig:
    """Build a ServerConfig from ``config_dir`` (default: ./config).

    Reads ``.env`` into the environment, then ``settings.yaml``. The
    TBOT_TOKEN and TBOT_API_URL environment variables override the
    matching file entries.

    Raises:
        ConfigurationError: if the file is malformed or validation fails.
    """
    if config_dir is None:
        config_dir = Path.cwd() / "config"

    env_file = config_dir / ".env"
    if env_file.exists():
        load_dotenv(env_file)

    settings = _load_yaml(config_dir / "settings.yaml")
    if os.environ.get("TBOT_TOKEN"):
        settings["token"] = os.environ["TBOT_TOKEN"]
    if os.environ.get("TBOT_API_URL"):
        settings["api_url"] = os.environ["TBOT_API_URL"]

    try:
        config = ServerConfig(**settings)
    except ValidationError as e:
        first = e.errors()[0]
        setting = ".".join(str(part) for part in first.get("loc", ()))
        raise ConfigurationError(
            f"Invalid configuration: {first.get('msg')}",
            setting_name=setting or None,
            errors=len(e.errors()),
        ) from e

    logger.debug("config_loaded", config_dir=str(config_dir))
    return config

"""Logging configuration for tbot.

structlog renders events through stdlib logging. The console always gets
everything at the configured level; with ``log_dir`` set, ``tbot.log``
collects all tbot events and each subsystem also writes its own file:

    root            -> console
      tbot          -> tbot.log
        tbot.mux        -> mux.log
        tbot.dispatch   -> dispatch.log
        tbot.transport  -> transport.log
"""

import logging
import logging.handlers
import re
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional

import structlog

from .config import LoggingSettings

if TYPE_CHECKING:
    from .config import ServerConfig

SUBSYSTEMS = ("mux", "dispatch", "transport")

LOGGER_PREFIX = "tbot"

_REDACTED = "***REDACTED***"

_SECRET_PATTERNS = (
    # Bot tokens, bare or embedded in /bot<token>/ API URLs
    re.compile(r"\d{5,}:[A-Za-z0-9_-]{30,}"),
    re.compile(r"Bearer\s+[a-zA-Z0-9_./-]{20,}"),
)


def _scrub(value: Any) -> Any:
    if isinstance(value, str):
        for pattern in _SECRET_PATTERNS:
            value = pattern.sub(_REDACTED, value)
        return value
    if isinstance(value, (list, tuple)):
        return type(value)(_scrub(v) for v in value)
    if isinstance(value, dict):
        return {k: _scrub(v) for k, v in value.items()}
    return value


def sanitize_secrets(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """structlog processor that redacts bot tokens anywhere in the event."""
    return {key: _scrub(value) for key, value in event_dict.items()}


def _level(name: Optional[str], default: int) -> int:
    if not name:
        return default
    return getattr(logging, name.upper(), default)


def _file_handler(
    path: Path, level: int, settings: LoggingSettings
) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=settings.max_file_size_mb * 1024 * 1024,
        backupCount=settings.backup_count,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.dev.ConsoleRenderer(colors=False),
            ],
        )
    )
    return handler


def _prepare_log_dir(log_dir: Optional[Path]) -> Optional[Path]:
    if log_dir is None:
        return None
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        print(
            f"WARNING: Cannot create log directory {log_dir}: {exc}. "
            "Logging to console only.",
            file=sys.stderr,
        )
        return None
    return log_dir


def setup_logging(config: Optional["ServerConfig"] = None) -> None:
    """Configure structlog and the stdlib logger tree.

    Called without a config (console only, INFO, loggers not cached so a
    later call can reconfigure) or with the loaded ServerConfig.
    """
    settings = config.logging if config is not None else LoggingSettings()
    root_level = _level(settings.level, logging.INFO)
    log_dir = _prepare_log_dir(settings.log_dir)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.handlers.clear()
    console = logging.StreamHandler(sys.stdout)
    console.setLevel(root_level)
    console.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
    root.addHandler(console)

    tbot_logger = logging.getLogger(LOGGER_PREFIX)
    tbot_logger.setLevel(logging.DEBUG)
    tbot_logger.handlers.clear()
    if log_dir is not None:
        tbot_logger.addHandler(_file_handler(log_dir / "tbot.log", root_level, settings))

    for subsystem in SUBSYSTEMS:
        level = _level(settings.subsystem_levels.get(subsystem), root_level)
        sub_logger = logging.getLogger(f"{LOGGER_PREFIX}.{subsystem}")
        sub_logger.setLevel(level)
        sub_logger.handlers.clear()
        if log_dir is not None:
            sub_logger.addHandler(_file_handler(log_dir / f"{subsystem}.log", level, settings))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            sanitize_secrets,
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=config is not None,
    )

"""Logging configuration for lbcfg.

Routes structlog events into stdlib loggers, one rotating file per
subsystem plus a combined file, and scrubs credentials and phone
numbers from every event before it is rendered.

Logger tree::

    root                 console (stderr)
    lbcfg                logs/lbcfg.log
    lbcfg.bot            logs/bot.log       transports, handler, config
    lbcfg.router         logs/router.log    command dispatch
    lbcfg.backend        logs/backend.log   credentials, provider API
    lbcfg.security       logs/security.log  authorization, rate limits

Subsystem loggers propagate, so an event lands in its own file, the
combined file and the console.
"""

import logging
import logging.handlers
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import structlog

SUBSYSTEMS = ("bot", "router", "backend", "security")

LOGGER_PREFIX = "lbcfg"

DEFAULT_LOG_DIR = Path(__file__).parent.parent / "logs"

# ---------------------------------------------------------------------------
# Secret sanitization
# ---------------------------------------------------------------------------

_REDACTED = "***REDACTED***"

# Event keys whose values are never logged
_SECRET_KEYS = frozenset({"key", "api_key", "apikey", "token", "password"})

_SECRET_PATTERNS = (
    # "apiKey": "..." in identity payloads, api_key=... in reprs
    re.compile(r"(?i)(\"?api_?key\"?\s*[:=]\s*\"?)[^\s\",}]+"),
    # X-Auth-Token header values
    re.compile(r"(?i)(x-auth-token\"?\s*[:=]\s*\"?)[^\s\",}]+"),
    re.compile(r"(Bearer\s+)[a-zA-Z0-9_./-]{20,}"),
)

# E.164 numbers, 7-15 digits
_PHONE_PATTERN = re.compile(r"\+\d{7,15}")


def _scrub(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    for pattern in _SECRET_PATTERNS:
        value = pattern.sub(lambda m: m.group(1) + _REDACTED, value)
    return _PHONE_PATTERN.sub(lambda m: "..." + m.group(0)[-4:], value)


def sanitize_secrets(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """structlog processor removing credentials and phone numbers.

    Values stored under a secret key are replaced outright. Strings,
    and strings one level down in lists, tuples and dicts, are
    pattern-scrubbed; phone numbers keep their last 4 digits.
    """
    for key, value in event_dict.items():
        if key.lower() in _SECRET_KEYS and value:
            event_dict[key] = _REDACTED
        elif isinstance(value, (list, tuple)):
            event_dict[key] = type(value)(_scrub(v) for v in value)
        elif isinstance(value, dict):
            event_dict[key] = {k: _scrub(v) for k, v in value.items()}
        else:
            event_dict[key] = _scrub(value)
    return event_dict


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------

@dataclass
class _LogSettings:
    log_dir: Path = DEFAULT_LOG_DIR
    level: int = logging.INFO
    subsystem_levels: Dict[str, int] = field(default_factory=dict)
    max_bytes: int = 10 * 1024 * 1024
    backup_count: int = 5
    cache_loggers: bool = False

    @classmethod
    def from_config(cls, config) -> "_LogSettings":
        level = _level(config.logging_level, logging.INFO)
        return cls(
            log_dir=config.log_dir,
            level=level,
            subsystem_levels={
                name: _level(value, level)
                for name, value in (config.logging_subsystem_levels or {}).items()
            },
            max_bytes=int(config.logging_max_file_size_mb) * 1024 * 1024,
            backup_count=int(config.logging_backup_count),
            cache_loggers=True,
        )


def _level(name: Optional[str], default: int) -> int:
    if not name:
        return default
    value = getattr(logging, str(name).upper(), None)
    return value if isinstance(value, int) else default


def _rotating_handler(
    path: Path, settings: _LogSettings, level: int, formatter: logging.Formatter
) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=settings.max_bytes,
        backupCount=settings.backup_count,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def _reset_logger(name: Optional[str], level: int) -> logging.Logger:
    logger = logging.getLogger(name)
    for handler in logger.handlers:
        if isinstance(handler, logging.FileHandler):
            handler.close()
    logger.handlers.clear()
    logger.setLevel(level)
    return logger


def setup_logging(config=None) -> None:
    """Configure structlog and the stdlib logger tree.

    Called twice at startup: first without a config (defaults, loggers
    not cached) so that config loading can log, then with the loaded
    Config, after which bound loggers are cached.

    Args:
        config: Optional Config instance.
    """
    settings = _LogSettings.from_config(config) if config is not None else _LogSettings()

    files_enabled = True
    try:
        settings.log_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        files_enabled = False
        # The bot keeps running with console output only
        print(
            f"WARNING: Cannot create log directory {settings.log_dir}: {exc}. "
            "Logging to the console only.",
            file=sys.stderr,
        )

    file_formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
    )

    # Handlers do the level filtering; loggers pass everything on
    root = _reset_logger(None, logging.DEBUG)
    console = logging.StreamHandler(sys.stderr)
    console.setLevel(settings.level)
    console.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
    root.addHandler(console)

    app = _reset_logger(LOGGER_PREFIX, logging.DEBUG)
    app.propagate = True
    if files_enabled:
        app.addHandler(_rotating_handler(
            settings.log_dir / f"{LOGGER_PREFIX}.log", settings, settings.level, file_formatter,
        ))

    for subsystem in SUBSYSTEMS:
        level = settings.subsystem_levels.get(subsystem, settings.level)
        sub = _reset_logger(f"{LOGGER_PREFIX}.{subsystem}", level)
        sub.propagate = True
        if files_enabled:
            sub.addHandler(_rotating_handler(
                settings.log_dir / f"{subsystem}.log", settings, level, file_formatter,
            ))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            sanitize_secrets,
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=settings.cache_loggers,
    )

"""
Rua Logging Configuration

Logging for the extension runtime. Every module logs through ``get_logger(__name__)``
under the ``rua`` hierarchy; a host calls ``setup_logging`` once at boot (or
passes ``configure_logging=True`` to ``ExtensionManager.start``).
"""

import logging
import logging.config
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional

from .config import get_config
from .exceptions import ConfigurationError

if TYPE_CHECKING:
    from .config import RuaConfig

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class StructuredFormatter(logging.Formatter):
    """Appends the ``structured_data`` of a record as sorted key=value pairs."""

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        data = getattr(record, "structured_data", None)
        if not data:
            return text
        pairs = " ".join(f"{key}={data[key]!r}" for key in sorted(data))
        return f"{text} | {pairs}"


def _resolve_level(config: "RuaConfig", log_level: Optional[str]) -> str:
    if log_level:
        return log_level.upper()
    if config.debug:
        return "DEBUG"
    return config.logging.level


def setup_logging(
    config: Optional["RuaConfig"] = None,
    log_level: Optional[str] = None,
    log_file: Optional[Path] = None,
    enable_structured: bool = True,
) -> None:
    """
    Configure logging for the extension runtime.

    Args:
        config: Runtime configuration (uses the global config if None)
        log_level: Overrides the configured level; ``debug`` mode implies DEBUG
        log_file: Rotating log file (defaults to ``logging.file_path``)
        enable_structured: Render ``log_structured`` data on console output

    Raises:
        ConfigurationError: If the log file location cannot be created
    """
    config = config or get_config()
    level = _resolve_level(config, log_level)

    if log_file is None and config.logging.file_path:
        log_file = Path(config.logging.file_path).expanduser()

    if log_file:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigurationError(
                f"Cannot create log directory {log_file.parent}: {e}",
                {"log_file": str(log_file)},
            )

    console_formatter = "structured" if enable_structured else "standard"
    handlers = ["console"] + (["file"] if log_file else [])

    logging_config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {"format": LOG_FORMAT, "datefmt": DATE_FORMAT},
            "structured": {
                "()": StructuredFormatter,
                "format": LOG_FORMAT,
                "datefmt": DATE_FORMAT,
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": console_formatter,
                "stream": sys.stdout,
            }
        },
        "loggers": {
            "rua": {"level": level, "handlers": handlers, "propagate": False},
            # HTTP capability traffic is noisy below WARNING
            "aiohttp": {"level": "WARNING", "handlers": handlers, "propagate": False},
        },
    }

    if log_file:
        logging_config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": level,
            "formatter": "structured",
            "filename": str(log_file),
            "maxBytes": config.logging.max_file_size,
            "backupCount": config.logging.backup_count,
            "encoding": "utf-8",
        }

    logging.config.dictConfig(logging_config)


def get_logger(name: str) -> logging.Logger:
    """Get a logger, normally ``get_logger(__name__)``"""
    return logging.getLogger(name)


def log_structured(
    logger: logging.Logger, level: int, message: str, **structured_data: Any
) -> None:
    """
    Log a message with structured data attached as ``record.structured_data``.

    Args:
        logger: Logger instance
        level: Logging level
        message: Log message
        **structured_data: Fields rendered by StructuredFormatter
    """
    if not logger.isEnabledFor(level):
        return
    record = logger.makeRecord(logger.name, level, "", 0, message, (), None)
    record.structured_data = structured_data
    logger.handle(record)

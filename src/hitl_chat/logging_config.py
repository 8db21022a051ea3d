"""
Logging configuration for hitl-chat.

One setup for every process the project runs. The CLI logs through rich;
the Chainlit app and the approval server log plain lines to stderr. Level
and log file come from Settings (LOG_LEVEL, LOG_FILE) unless given.
"""

import logging
import logging.config
from pathlib import Path
from typing import Any, Optional


PLAIN_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DETAILED_FORMAT = (
    "%(asctime)s - %(name)s - %(levelname)s - "
    "[%(filename)s:%(lineno)d] - %(message)s"
)

# Libraries that log every request or socket event at INFO
LIBRARY_LEVELS = {
    "httpx": "WARNING",
    "httpcore": "WARNING",
    "openai": "WARNING",
    "humanlayer": "WARNING",
    "chainlit": "WARNING",
    "engineio": "WARNING",
    "socketio": "WARNING",
    "uvicorn.access": "WARNING",
}


def build_logging_config(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    detailed: bool = False,
    rich: bool = False,
) -> dict[str, Any]:
    """
    Build a dictConfig mapping.

    Args:
        level: Level for the root and hitl_chat loggers
        log_file: Also write to this rotating file
        detailed: Include filename and line number
        rich: Use rich.logging.RichHandler for the console

    Returns:
        Mapping accepted by logging.config.dictConfig
    """
    level = level.upper()
    line_format = DETAILED_FORMAT if detailed else PLAIN_FORMAT

    formatters: dict[str, Any] = {
        "plain": {"format": line_format, "datefmt": "%Y-%m-%d %H:%M:%S"},
    }

    if rich:
        formatters["rich"] = {"format": "%(message)s", "datefmt": "[%X]"}
        console = {
            "class": "rich.logging.RichHandler",
            "level": level,
            "formatter": "rich",
            "rich_tracebacks": True,
            "show_path": detailed,
        }
    else:
        console = {
            "class": "logging.StreamHandler",
            "level": level,
            "formatter": "plain",
            "stream": "ext://sys.stderr",
        }

    handlers: dict[str, Any] = {"console": console}
    if log_file:
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": level,
            "formatter": "plain",
            "filename": str(log_file),
            "maxBytes": 10485760,  # 10MB
            "backupCount": 5,
            "encoding": "utf-8",
        }

    loggers: dict[str, Any] = {name: {"level": lvl} for name, lvl in LIBRARY_LEVELS.items()}
    loggers["hitl_chat"] = {"level": level}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "handlers": handlers,
        "root": {"level": level, "handlers": list(handlers)},
        "loggers": loggers,
    }


def setup_logging(
    level: Optional[str] = None,
    log_file: Optional[Path] = None,
    detailed: bool = False,
    rich: bool = False,
    settings: Any = None,
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (falls back to settings.log_level, then INFO)
        log_file: Rotating log file (falls back to settings.log_file)
        detailed: Whether to include filename/lineno
        rich: Console output through rich
        settings: Settings instance supplying defaults
    """
    if settings is not None:
        level = level or settings.log_level
        log_file = log_file or settings.log_file

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)

    logging.config.dictConfig(
        build_logging_config(level or "INFO", log_file, detailed=detailed, rich=rich)
    )

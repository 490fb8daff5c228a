"""Logging configuration for the compiler.

Library modules only call ``get_logger``. Handlers are installed once, by
``setup_logging`` or, for callers that configured nothing themselves, by
``ensure_logging`` on the first compilation, from the ``logging`` section
of config.yaml.
"""

import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

DEFAULT_LOG_FILE = "logs/erd2ddl.log"

FORMATS = {
    "detailed": (
        "%(asctime)s | %(levelname)-8s | %(name)s | %(funcName)s:%(lineno)d | %(message)s",
        "%Y-%m-%d %H:%M:%S",
    ),
    "simple": ("%(levelname)s | %(name)s | %(message)s", None),
}


def _resolve_log_path(log_file: Optional[str]) -> Path:
    # relative paths are anchored at the package root, not the working directory
    path = Path(log_file or DEFAULT_LOG_FILE)
    if path.is_absolute():
        return path
    return Path(__file__).parent.parent.parent / path


def _file_handler(log_file: Optional[str], truncate: bool) -> logging.FileHandler:
    log_path = _resolve_log_path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    return logging.FileHandler(log_path, mode="w" if truncate else "a", encoding="utf-8")


def setup_logging(
    level: str = "INFO",
    format_type: str = "detailed",
    log_to_file: bool = True,
    log_file: Optional[str] = None,
    clear_existing: bool = False,
) -> None:
    """
    Replace the root logger's handlers with a stdout handler and, optionally, a file handler.

    Args:
        level: Logging level name; unknown names fall back to INFO
        format_type: "simple" or "detailed"
        log_to_file: Whether to also log to ``log_file``
        log_file: Log file path, relative to the ERD2DDL package root unless absolute
        clear_existing: Truncate the log file instead of appending to it
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    fmt, datefmt = FORMATS.get(format_type, FORMATS["detailed"])
    formatter = logging.Formatter(fmt=fmt, datefmt=datefmt)

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_to_file:
        handlers.append(_file_handler(log_file, truncate=clear_existing))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    for handler in handlers:
        handler.setLevel(log_level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)


def setup_logging_from_config(overrides: Optional[Dict[str, Any]] = None) -> None:
    """Configure logging from config.yaml; ``overrides`` replace individual keys."""
    from ERD2DDL.config.loader import get_config

    settings = dict(get_config("logging"))
    settings.update(overrides or {})
    setup_logging(
        level=str(settings.get("level", "INFO")),
        format_type=str(settings.get("format", "detailed")),
        log_to_file=bool(settings.get("log_to_file", False)),
        log_file=settings.get("log_file"),
        clear_existing=bool(settings.get("clear_existing", False)),
    )


def ensure_logging() -> bool:
    """Configure logging from config.yaml unless the root logger already has handlers.

    Returns:
        True when this call installed the handlers
    """
    if logging.getLogger().handlers:
        return False
    setup_logging_from_config()
    return True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)

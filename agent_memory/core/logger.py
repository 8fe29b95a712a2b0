"""Logging utilities shared across the agent memory engine.

The engine is a library, so nothing here touches the root logger on import.
Applications call :func:`setup_logging` once; components only ever call
:func:`get_logger`.
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

_CONSOLE_LOG_FORMAT = "%(asctime)s | %(levelname).1s | %(name)s | %(message)s"
_FILE_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(threadName)s | %(name)s | %(message)s"
_DATEFMT = "%H:%M:%S"
_FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"
_ROOT_LOGGER_NAME = "agent_memory"
_LOG_DIR_ENV = "LOG_DIR"

_CONFIGURED = False
_SESSION_LOG_PATH: Path | None = None

_COLOUR_CODES = {
    logging.DEBUG: "\033[36m",  # Cyan
    logging.INFO: "\033[32m",  # Green
    logging.WARNING: "\033[33m",  # Yellow
    logging.ERROR: "\033[31m",  # Red
    logging.CRITICAL: "\033[35m",  # Magenta
}
_COLOUR_RESET = "\033[0m"

logging.getLogger(_ROOT_LOGGER_NAME).addHandler(logging.NullHandler())


def setup_logging(level: str = "INFO", *, log_dir: str | Path | None = None) -> None:
    """Attach console (and optional file) handlers to the engine logger once.

    Later calls only adjust the level. A per-session log file is written when
    ``log_dir`` is given or ``LOG_DIR`` is set.
    """
    global _CONFIGURED, _SESSION_LOG_PATH

    package_logger = logging.getLogger(_ROOT_LOGGER_NAME)
    package_logger.setLevel(_coerce_level(level))

    if _CONFIGURED:
        return

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(
        _ColourFormatter(
            _CONSOLE_LOG_FORMAT,
            datefmt=_DATEFMT,
            use_colour=_supports_colour(console_handler.stream),
        )
    )
    package_logger.addHandler(console_handler)

    target_dir = _resolve_log_dir(log_dir)
    if target_dir is not None:
        target_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        _SESSION_LOG_PATH = target_dir / f"memory_{timestamp}.log"
        file_handler = logging.FileHandler(_SESSION_LOG_PATH, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(_FILE_LOG_FORMAT, datefmt=_FILE_DATEFMT))
        package_logger.addHandler(file_handler)
    else:
        _SESSION_LOG_PATH = None

    package_logger.propagate = False
    _CONFIGURED = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a logger nested under the ``agent_memory`` hierarchy."""
    if not name:
        return logging.getLogger(_ROOT_LOGGER_NAME)
    if name == _ROOT_LOGGER_NAME or name.startswith(f"{_ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{_ROOT_LOGGER_NAME}.{name}")


def session_log_path() -> Path | None:
    """Expose the current session log path for diagnostics."""
    return _SESSION_LOG_PATH


def _resolve_log_dir(log_dir: str | Path | None) -> Path | None:
    if log_dir is None:
        env_dir = os.getenv(_LOG_DIR_ENV)
        return Path(env_dir) if env_dir else None
    return log_dir if isinstance(log_dir, Path) else Path(log_dir)


def _coerce_level(level: str | int) -> int:
    if isinstance(level, int):
        return level
    level_name = level.strip().upper()
    if level_name.isdigit():
        return int(level_name)
    resolved = logging.getLevelName(level_name)
    return resolved if isinstance(resolved, int) else logging.INFO


def _supports_colour(stream) -> bool:
    if stream is None or not hasattr(stream, "isatty"):
        return False
    try:
        return stream.isatty() and sys.platform != "win32"
    except ValueError:  # closed stream
        return False


class _ColourFormatter(logging.Formatter):
    def __init__(self, fmt: str, *, datefmt: str | None, use_colour: bool) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._use_colour = use_colour

    def format(self, record: logging.LogRecord) -> str:
        original_levelname = record.levelname
        if self._use_colour:
            colour = _COLOUR_CODES.get(record.levelno)
            if colour:
                record.levelname = f"{colour}{record.levelname}{_COLOUR_RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = original_levelname

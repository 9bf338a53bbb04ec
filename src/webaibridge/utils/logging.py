"""Logging bootstrap for bridge processes and command-line tools."""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path

__all__ = ["LOG_DIR_ENV", "get_log_path", "get_logger", "set_level", "setup_logging"]

LOG_DIR_ENV = "WEBAIBRIDGE_LOG_DIR"
_DEFAULT_LOG_DIR = Path.home() / ".webaibridge" / "logs"
_LOG_FILENAME = "webaibridge.log"
_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
# websocket-client traces every frame at DEBUG.
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "websocket")
_LOG_PATH: Path | None = None


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Route root logging to a rotating file and, optionally, stderr.

    Repeated calls return the existing log path unless *force* is set, in
    which case all root handlers are replaced.
    """

    global _LOG_PATH
    if _LOG_PATH is not None and not force:
        return _LOG_PATH

    log_path = _resolve_log_dir(log_dir) / _LOG_FILENAME
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handlers = _build_handlers(log_path, console=console, max_bytes=max_bytes, backup_count=backup_count)
    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    set_level(level)

    _LOG_PATH = log_path
    return log_path


def set_level(level: int) -> None:
    """Change the root level at runtime and keep third-party loggers at WARNING or above."""

    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers:
        handler.setLevel(level)
    quiet_level = max(level, logging.WARNING)
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(quiet_level)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def get_log_path() -> Path | None:
    """Return the active log file, or ``None`` before :func:`setup_logging` ran."""

    return _LOG_PATH


def _build_handlers(
    log_path: Path,
    *,
    console: bool,
    max_bytes: int,
    backup_count: int,
) -> list[logging.Handler]:
    formatter = logging.Formatter(fmt=_FORMAT, datefmt=_DATE_FORMAT)
    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(
            log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
    ]
    if console:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def _resolve_log_dir(log_dir: Path | str | None) -> Path:
    return Path(log_dir or os.environ.get(LOG_DIR_ENV) or _DEFAULT_LOG_DIR).expanduser()

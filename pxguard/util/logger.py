"""Unified logger for the whole project."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from pxguard.config.settings import settings


MAX_BYTES = 10 * 1024 * 1024
BACKUP_COUNT = 10


def normalize_level(raw: str) -> int:
    candidate = str(raw or "INFO").strip().upper()
    return {
        "CRITICAL": logging.CRITICAL,
        "ERROR": logging.ERROR,
        "WARNING": logging.WARNING,
        "INFO": logging.INFO,
        "DEBUG": logging.DEBUG,
    }.get(candidate, logging.INFO)


def _build_logger() -> logging.Logger:
    configured_logger = logging.getLogger("pxguard")
    if configured_logger.handlers:
        return configured_logger

    resolved_level = normalize_level(settings.log_level)
    configured_logger.setLevel(resolved_level)

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    configured_logger.addHandler(stream_handler)

    log_file = settings.log_file_path.strip()
    if log_file:
        try:
            path = Path(log_file)
            path.parent.mkdir(parents=True, exist_ok=True)
            rotating_handler = RotatingFileHandler(
                path,
                maxBytes=MAX_BYTES,
                backupCount=BACKUP_COUNT,
                encoding="utf-8",
            )
            rotating_handler.setFormatter(formatter)
            configured_logger.addHandler(rotating_handler)
        except (OSError, PermissionError):
            # 日志目录不可写时仅使用 stderr
            pass

    configured_logger.propagate = False
    return configured_logger


logger = _build_logger()


def get_logger(name: str, level: int | str | None = None) -> logging.Logger:
    """Return a child logger under the pxguard namespace.

    With ``level`` the child is keyed by that level (``enforcer.debug``,
    ``enforcer.error``), so instances configured differently never share one.
    """

    if level is None:
        return logger.getChild(name)
    resolved = level if isinstance(level, int) else normalize_level(level)
    child = logger.getChild(f"{name}.{logging.getLevelName(resolved).lower()}")
    child.setLevel(resolved)
    return child

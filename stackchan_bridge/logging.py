"""Logging configuration helpers."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUPS = 3

# Loggers that flood INFO/DEBUG with per-packet or per-request detail.
NETWORK_LOGGERS = ("paho", "aiohttp.access", "aiohttp.client", "openai", "httpx")


def configure_logging(
    level: str = "INFO", *, log_path: Optional[Path] = None, log_network: bool = False
) -> logging.Logger:
    """Configure root logging handlers and return the root logger.

    Parameters
    ----------
    level:
        Log level name, e.g. "INFO". Unknown names fall back to INFO.
    log_path:
        Optional path for a size-rotated log file, written in addition to stderr.
    log_network:
        When true, bus, HTTP and language-model client logs pass through at
        ``level``; otherwise they are held at WARNING.
    """

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    logging.captureWarnings(True)
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )

    if log_path:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUPS,
            encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(file_handler)

    network_level = logging.NOTSET if log_network else logging.WARNING
    for name in NETWORK_LOGGERS:
        logging.getLogger(name).setLevel(network_level)

    return root

"""Logging configuration helpers."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Per-request and per-frame chatter, silenced unless network logging is on.
NETWORK_LOGGERS = (
    "aiohttp.access",
    "aiohttp.websocket",
    "grbl_relay.effects.gateway",
    "grbl_relay.effects.serial",
)


def configure_logging(
    level: str = "INFO", *, log_path: Optional[Path] = None, log_network: bool = False
) -> None:
    """Configure root logging handlers.

    Parameters
    ----------
    level:
        Log level name, e.g. "INFO".
    log_path:
        Optional file to append log records to. When absent, only console logging is configured.
    log_network:
        When true, keep aiohttp access logs, websocket chatter and the serial
        and gateway managers' debug output. Otherwise those loggers are held
        at INFO (aiohttp's at WARNING) even when ``level`` is DEBUG.
    """

    logging.captureWarnings(True)

    for handler in list(logging.getLogger().handlers):
        logging.getLogger().removeHandler(handler)

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )

    if log_path:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(file_handler)

    for name in NETWORK_LOGGERS:
        if log_network:
            logging.getLogger(name).setLevel(logging.NOTSET)
        elif name.startswith("aiohttp."):
            logging.getLogger(name).setLevel(logging.WARNING)
        else:
            logging.getLogger(name).setLevel(logging.INFO)

"""Logging configuration for the controller process."""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from bulletproof_ui.constants import LOG_FILE, LOG_FORMAT


def configure_logging(debug: bool = False, log_file: Optional[Path] = LOG_FILE) -> None:
    """Log to the console and to a size-capped file.

    Args:
        debug: Enable DEBUG level (probe noise, teardown details)
        log_file: Rotating log file path, None for console only
    """
    handlers = [logging.StreamHandler()]
    if log_file is not None:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(
                RotatingFileHandler(log_file, maxBytes=2 * 1024 * 1024, backupCount=3)
            )
        except OSError as e:
            print(f"[Warning] Cannot write log file {log_file}: {e}")

    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )

"""Logging setup for brog."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(log_level: str = "info", log_file: Path | None = None) -> None:
    """Configure logging for the server process.

    Logs go to stderr and, when ``log_file`` is given, to that file as well.

    Args:
        log_level: Level name such as "info" or "debug".
        log_file: Optional path of a log file; its directory is created.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=log_level.upper(),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )

    # Quieten down noisy libraries
    logging.getLogger("watchdog").setLevel(logging.WARNING)
    logging.getLogger("websockets").setLevel(logging.WARNING)

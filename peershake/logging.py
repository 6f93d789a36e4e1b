"""
Logging helpers for the command line tool.
"""

from __future__ import annotations

import logging
import sys
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path


class UTCFormatter(logging.Formatter):
    """Formatter that renders timestamps in UTC ISO-8601."""

    converter = time.gmtime

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)sZ %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )


def setup_logging(*, level: int = logging.INFO, log_file: Path | None = None) -> logging.Logger:
    """Configure the ``peershake`` logger with a stderr sink and an optional rotating file."""

    formatter = UTCFormatter()
    root = logging.getLogger("peershake")
    root.setLevel(level)
    root.handlers.clear()

    # stdout is reserved for the summary
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(log_file, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    root.debug("Logging configured at level %s", logging.getLevelName(level))
    return root

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

from platformdirs import user_log_dir

APP_NAME = "pyagx"
LOG_FILE = "pyagx.log"


def log_dir() -> Path:
    return Path(user_log_dir(APP_NAME))


def setup_logging(level: str | None = None, directory: Path | None = None) -> Path:
    """Send all logging to a rotating file; the terminal is left to rich."""
    level_name = (level or os.getenv("PYAGX_LOG_LEVEL", "INFO")).upper()
    d = directory or log_dir()
    d.mkdir(parents=True, exist_ok=True)
    log_file = d / LOG_FILE

    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name, logging.INFO))
    for h in list(root.handlers):
        root.removeHandler(h)
    handler = RotatingFileHandler(log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"))
    root.addHandler(handler)
    # aiohttp's access log is noisy for a long-lived SSE stream.
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    logging.getLogger(__name__).info("logging to %s at %s", log_file, level_name)
    return log_file

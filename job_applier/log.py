"""Logging setup shared by the supervisor, sessions and the CLI (stdlib only)."""
from __future__ import annotations

import logging
import os
import sys
from datetime import datetime
from pathlib import Path

LOG_DIR = Path(__file__).resolve().parent.parent / "logs"
_FORMAT = "%(asctime)s  %(levelname)-8s  %(name)s  %(message)s"
_DATE_FMT = "%Y-%m-%d %H:%M:%S"
_configured = False


def get_logger(name: str) -> logging.Logger:
    """Return a named logger; installs the root handlers on first call."""
    if not _configured:
        configure()
    return logging.getLogger(name)


def configure(level: str | None = None, log_dir: Path | None = None) -> None:
    """Install console + daily file handlers on the root logger.

    ``level`` wins over ``LOG_LEVEL``. Setting ``APPLIER_LOG_FILE=0``
    keeps everything on stdout (useful for one-shot CLI calls and tests).
    Calling again only adjusts the level.
    """
    global _configured
    level_name = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    resolved = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    root.setLevel(resolved)
    for handler in root.handlers:
        if isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler):
            handler.setLevel(resolved)

    if _configured or root.handlers:
        _configured = True
        return
    _configured = True

    formatter = logging.Formatter(_FORMAT, datefmt=_DATE_FMT)
    console = logging.StreamHandler(sys.stdout)
    console.setLevel(resolved)
    console.setFormatter(formatter)
    root.addHandler(console)

    if os.environ.get("APPLIER_LOG_FILE", "1").strip().lower() in ("0", "false", "no"):
        return
    target = log_dir or LOG_DIR
    try:
        target.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(
            target / f"applier_{datetime.now().strftime('%Y-%m-%d')}.log", encoding="utf-8"
        )
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(formatter)
        root.addHandler(fh)
    except OSError:
        pass

"""Centralized logging configuration for the aggregator."""
from __future__ import annotations

import logging
import os
import sys
from datetime import datetime
from pathlib import Path

_DEFAULT_LOG_DIR = Path(__file__).resolve().parent.parent / "logs"
_FORMAT = "%(asctime)s  %(levelname)-8s  %(name)s  %(message)s"
_DATE_FMT = "%Y-%m-%d %H:%M:%S"
_configured = False


def get_logger(name: str) -> logging.Logger:
    """Return a named logger; configures root handlers on first call."""
    global _configured
    if not _configured:
        configure()
    return logging.getLogger(name)


def configure(level: str | None = None, log_dir: Path | None = None) -> None:
    """Install console and daily-file handlers on the root logger.

    Safe to call more than once; handlers are only added when the root logger
    has none (so pytest's capture handlers and embedding apps win).
    """
    global _configured
    _configured = True

    level_name = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    resolved = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    root.setLevel(resolved)

    if root.handlers:
        return

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(resolved)
    console.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATE_FMT))
    root.addHandler(console)

    if os.environ.get("AGGREGATOR_LOG_FILE", "1").strip().lower() in ("0", "false", "no"):
        return

    target = log_dir or Path(os.environ.get("AGGREGATOR_LOG_DIR", "") or _DEFAULT_LOG_DIR)
    try:
        target.mkdir(parents=True, exist_ok=True)
        log_file = target / f"aggregator_{datetime.now().strftime('%Y-%m-%d')}.log"
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATE_FMT))
        root.addHandler(fh)
    except OSError as exc:
        root.warning("File logging disabled (%s): %s", target, exc)

"""
Log sink setup: rotate at startup, prune old rotations, mirror to console.
"""

from __future__ import annotations
import logging
import sys
import time
from pathlib import Path
from typing import Optional

from .errors import LogSinkError

log = logging.getLogger(__name__)

LOG_FORMAT  = "[%(asctime)s] %(levelname)s %(name)s - %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

RETENTION_SECONDS = 7 * 24 * 3600


def rotate(log_file: Path) -> Optional[Path]:
    """Rename an existing log file to <name>.1. Returns the new path, if any."""
    if not log_file.exists():
        return None
    rotated = log_file.with_name(log_file.name + ".1")
    log_file.replace(rotated)
    return rotated


def prune(log_file: Path, max_age: float = RETENTION_SECONDS, now: Optional[float] = None) -> list[Path]:
    """Delete rotated copies (<name>.*) older than max_age seconds."""
    now = time.time() if now is None else now
    removed = []
    prefix = log_file.name + "."
    for path in log_file.parent.glob(prefix + "*"):
        try:
            if now - path.stat().st_mtime > max_age:
                path.unlink()
                removed.append(path)
        except OSError:
            # Raced with another cleaner, or not ours to delete
            continue
    return removed


def setup_logging(log_file: str, verbose: bool = False) -> logging.Logger:
    """
    Configure the `nvidler` logger to write to log_file and stdout.
    Raises LogSinkError when the file cannot be opened.
    """
    path = Path(log_file)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        rotate(path)
        prune(path)
        file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    except OSError as e:
        raise LogSinkError(f"Failed to open log file {path}: {e}") from e

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    console = logging.StreamHandler(sys.stdout)
    for handler in (file_handler, console):
        handler.setFormatter(formatter)

    logger = logging.getLogger("nvidler")
    logger.handlers.clear()
    logger.addHandler(file_handler)
    logger.addHandler(console)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False
    return logger


def close_logging():
    logger = logging.getLogger("nvidler")
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True

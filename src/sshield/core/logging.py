"""Logging configuration for the command line entry point."""

import logging
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def resolve_level(name: str | None, verbose: bool = False) -> int:
    """Translate a configured level name into a logging level."""
    if verbose:
        return logging.DEBUG
    return LEVELS.get((name or "info").lower(), logging.INFO)


def setup_logging(level: int = logging.INFO, log_file: Path | None = None) -> None:
    """Configure the ``sshield`` logger.

    Console output goes to stderr with a short format so command output on
    stdout stays clean. When ``log_file`` is given, everything at DEBUG and
    above is also appended there.

    Args:
        level: Console log level.
        log_file: Optional log file path.
    """
    logger = logging.getLogger("sshield")
    logger.setLevel(logging.DEBUG)

    # Avoid duplicate handlers if setup is called multiple times
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    logger.addHandler(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(file_handler)

    logger.propagate = False

"""Logging configuration for the client and the detached daemon."""

import logging
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(
    log_level: str,
    log_file: Path | None = None,
    force: bool = False,
) -> None:
    """Configure the root logger.

    Logs go to stderr, never stdout: stdout belongs to the wrapped program's
    output. The detached daemon passes log_file because its stderr is
    /dev/null.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Optional file to log to instead of stderr.
        force: Replace handlers the host program already installed.
    """
    level = getattr(logging, log_level.upper(), logging.WARNING)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(log_file, encoding="utf-8")
    else:
        handler = logging.StreamHandler(sys.stderr)

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[handler],
        force=force,
    )

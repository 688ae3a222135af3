"""Logging configuration for OnlineNow."""

import logging
import os
import sys

LOG_LEVEL_ENV = "ONLINENOW_LOG_LEVEL"
LOG_FILE_ENV = "ONLINENOW_LOG_FILE"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def parse_level(name: str | None) -> int | None:
    """Map a level name to a logging constant, or None if unrecognized."""
    if not name:
        return None
    return _LEVELS.get(name.strip().upper())


def configure_logging(environ=None) -> int:
    """Configure application-wide logging.

    The monitor runs headless, so stderr is the primary output; a log file
    can be added for long-running sessions.

    Environment Variables:
        ONLINENOW_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR or CRITICAL (default: INFO)
        ONLINENOW_LOG_FILE: Optional path; records are appended there as well

    Examples:
        # Default INFO level: lifecycle and state transitions
        $ python -m onlinenow

        # Per-probe detail (every endpoint attempt, every handshake)
        $ ONLINENOW_LOG_LEVEL=DEBUG python -m onlinenow

        # Degraded conditions only, kept on disk
        $ ONLINENOW_LOG_LEVEL=WARNING ONLINENOW_LOG_FILE=~/onlinenow.log python -m onlinenow

    Returns:
        The effective root log level
    """
    env = os.environ if environ is None else environ
    requested = env.get(LOG_LEVEL_ENV, "INFO")
    level = parse_level(requested)
    if level is None:
        level = logging.INFO

    handlers = [logging.StreamHandler(sys.stderr)]
    log_file = env.get(LOG_FILE_ENV, "").strip()
    file_error = None
    if log_file:
        try:
            handlers.append(logging.FileHandler(os.path.expanduser(log_file), encoding="utf-8"))
        except OSError as e:
            file_error = e

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        handlers=handlers,
        force=True,
    )

    # urllib3 logs every connection at DEBUG; keep it out of probe traces
    logging.getLogger("urllib3").setLevel(max(level, logging.INFO))

    logger = logging.getLogger(__name__)
    if parse_level(requested) is None:
        logger.warning("Unknown %s=%r, using INFO", LOG_LEVEL_ENV, requested)
    if file_error is not None:
        logger.warning("Cannot open log file %s: %s", log_file, file_error)
    logger.info("Logging configured: level=%s", logging.getLevelName(level))
    return level

"""Logging configuration for multiping."""

import logging
import os
import sys

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def _parse_level(value: str) -> int | None:
    value = value.strip().upper()
    if value in LOG_LEVELS:
        return LOG_LEVELS[value]
    if value.isdigit():
        return int(value)
    return None


def configure_logging(default_level: str = "INFO") -> int:
    """Configure logging for the engine and the dashboard.

    The level comes from MULTIPING_LOG_LEVEL (a level name or number),
    falling back to ``default_level``. What each level shows:

        DEBUG    every probe, reply, drop and timeout
        INFO     sockets opened, hosts added/removed, engine start/stop
        WARNING  failed sends, simulated-data fallback, bad config values
        ERROR    an address family that cannot be probed

    Output goes to stderr; any handlers installed earlier are replaced.

    Returns:
        The level that was applied
    """
    raw = os.environ.get("MULTIPING_LOG_LEVEL", default_level)
    log_level = _parse_level(raw)
    invalid = log_level is None
    if invalid:
        log_level = logging.INFO

    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        stream=sys.stderr,
        force=True,
    )

    logger = logging.getLogger(__name__)
    if invalid:
        logger.warning("Unknown MULTIPING_LOG_LEVEL %r, using INFO", raw)
    logger.info("Logging configured: level=%s", logging.getLevelName(log_level))
    return log_level

"""Logging setup for the Subcurrent command line."""

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
DATE_FORMAT = "%H:%M:%S"

QUIET_LOGGERS = ("urllib3", "charset_normalizer")


def configure_logging(verbose: bool = False) -> logging.Logger:
    """Send the package's log records to stderr.

    Args:
        verbose: Log at DEBUG instead of INFO

    Returns:
        The package logger
    """
    logger = logging.getLogger("subcurrent")
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logger

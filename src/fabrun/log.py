"""Logging configuration.

Diagnostics only; user-facing progress goes through the Console.
"""

from __future__ import annotations

import logging
import sys

LOGGER_NAME = "fabrun"

_FORMAT = "%(asctime)s %(levelname)-7s %(name)s [%(threadName)s] %(message)s"


def configure_logging(debug: bool = False) -> None:
    """Install a single stderr handler on the fabrun logger."""

    logger = logging.getLogger(LOGGER_NAME)

    # Remove handlers from a previous call so re-configuring never duplicates lines.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%H:%M:%S"))

    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if debug else logging.WARNING)
    logger.propagate = False

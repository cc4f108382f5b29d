#!/usr/bin/env python3
"""Logging setup for the proxy process."""
import logging
import sys

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: str = 'INFO') -> logging.Logger:
    """Send ``groupproxy`` logs to stderr and return the package logger."""
    logger = logging.getLogger('groupproxy')
    logger.setLevel(level.upper())

    # Add a handler only once, even when called repeatedly
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
        logger.propagate = False

    # httpx logs every request at INFO, which duplicates the access log
    logging.getLogger('httpx').setLevel(logging.WARNING)
    return logger

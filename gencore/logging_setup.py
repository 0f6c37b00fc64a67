"""Logging configuration for the service process."""

import logging

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once at startup. Safe to call repeatedly."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    logging.getLogger("gencore").setLevel(level.upper())

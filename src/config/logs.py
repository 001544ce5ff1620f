"""
Logging setup - configured once at startup.

Components receive the returned logger (or a child of it) explicitly
instead of consulting a global level.
"""

import logging

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

_LEVELS = {
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}


def configure_logging(level: str = "INFO", name: str = "warden") -> logging.Logger:
    """Configure root handlers and return the application logger."""
    resolved = _LEVELS.get((level or "INFO").strip().upper())
    logging.basicConfig(level=resolved or logging.INFO, format=LOG_FORMAT, force=True)

    app_logger = logging.getLogger(name)
    if resolved is None:
        app_logger.warning("Unknown log level '%s', defaulting to INFO", level)
    app_logger.debug("Debug logging enabled")
    return app_logger

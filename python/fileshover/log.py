import logging
import os

LOG_ENV_VAR = "FILESHOVER_LOG"
LOG_FORMAT = "%(asctime)s %(levelname)s %(threadName)s %(name)s: %(message)s"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def level_from_name(name: str | None) -> int:
    if not name:
        return logging.INFO
    return _LEVELS.get(name.strip().lower(), logging.INFO)


def configure_logging(level: str | None = None) -> int:
    """Sets up the root logger. An explicit level wins over the environment."""
    resolved = level_from_name(level if level else os.getenv(LOG_ENV_VAR))
    logging.basicConfig(level=resolved, format=LOG_FORMAT, force=True)
    return resolved

"""Structured logging for bus events (advertise, subscribe, deliver)."""

import logging
import sys
from typing import Union

ROOT_LOGGER = "topicbus"

_level: int = logging.INFO


def _coerce_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).upper())
    return value if isinstance(value, int) else logging.INFO


def set_level(level: Union[int, str]) -> None:
    """Set the level for loggers created from now on and for existing topicbus loggers."""
    global _level
    _level = _coerce_level(level)
    for name, logger in logging.Logger.manager.loggerDict.items():
        if isinstance(logger, logging.Logger) and name.startswith(ROOT_LOGGER):
            logger.setLevel(_level)


def get_logger(name: str, level: Union[int, str, None] = None) -> logging.Logger:
    """Return a configured logger; events go in the message, details in ``extra``."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
            )
        )
        logger.addHandler(handler)
        logger.setLevel(_coerce_level(level) if level is not None else _level)
    return logger

import logging
import os
import sys
from typing import Union

_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
    "NOTSET": logging.NOTSET,
}


def resolve_level(raw: Union[str, int, None]) -> int:
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str):
        name = raw.strip().upper()
        if name.isdigit():
            return int(name)
        return _LEVELS.get(name, logging.INFO)
    return logging.INFO


def setup_logging(level: Union[str, int, None] = None) -> None:
    """Install a single stdout handler on the root logger.

    Level precedence: explicit `level`, then SOIREE_LOG_LEVEL, then LOG_LEVEL,
    then INFO. Calling it again only changes the level.
    """
    raw = level if level is not None else (os.getenv("SOIREE_LOG_LEVEL") or os.getenv("LOG_LEVEL"))
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
        root.addHandler(handler)
        logging.captureWarnings(True)
    root.setLevel(resolve_level(raw))

# app/core/logger.py
import logging
from core.config import settings

logger = logging.getLogger("relay-logger")
logger.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)
logger.propagate = False

# Always add a console handler with a simple, structured-ish format
if not logger.handlers:
    _console = logging.StreamHandler()
    _console.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)
    _console.setFormatter(logging.Formatter(
        fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    ))
    logger.addHandler(_console)

import logging
from typing import Optional, Union

from .constants import LOG_LEVEL

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_console_handler: Optional[logging.Handler] = None


def setup_logging(level: Union[str, int] = LOG_LEVEL) -> logging.Handler:
    """Configure the root logger with a single console handler."""
    global _console_handler
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger()
    root.setLevel(level)
    if _console_handler is None:
        _console_handler = logging.StreamHandler()
        _console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    _console_handler.setLevel(level)
    if _console_handler not in root.handlers:
        root.addHandler(_console_handler)
    return _console_handler

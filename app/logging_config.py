"""
Logging setup shared by the API and the scheduling engine.
"""

import logging
import sys
from typing import Optional

from app.config import LOG_LEVEL


class ColoredFormatter(logging.Formatter):
    """Formatter that colours the level name for terminal output."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
        'RESET': '\033[0m',
    }

    def format(self, record):
        color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
        reset = self.COLORS['RESET']
        timestamp = self.formatTime(record, self.datefmt)
        colored_level = f"{color}{record.levelname:8}{reset}"

        message = f"{timestamp} | {colored_level} | {record.name:28} | {record.getMessage()}"
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return message


def setup_logging(level: Optional[str] = None) -> None:
    """
    Install a single stdout handler on the root logger.

    Calling it again replaces the handler instead of stacking a second one.
    """
    root = logging.getLogger()
    root.setLevel((level or LOG_LEVEL).upper())

    for handler in list(root.handlers):
        if getattr(handler, "_agenda_handler", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ColoredFormatter(datefmt="%H:%M:%S"))
    handler._agenda_handler = True
    root.addHandler(handler)

    # SQL echo is noisy at INFO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

"""
Logging Configuration
=====================
One call from main.py wires the root logger for the service.

Handlers:
    console  stderr, coloured by level (uvicorn writes to stderr too)
    file     ``<LOG_DIR>/linker.log``, rotated at midnight, LOG_BACKUP_DAYS kept

Webhook work runs in background tasks after the 202 has been sent, so the
file log is the only place a failed workflow leaves a trace. Every record
carries ``name:lineno`` for that reason.
"""
import logging
import os
import sys
from logging.handlers import TimedRotatingFileHandler
from typing import Optional, Union

from linker.core import config

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Loggers that must reach the root handlers even if a library reconfigured them
PROPAGATED_LOGGERS = ("linker", "main", "uvicorn", "uvicorn.error", "uvicorn.access")


class LevelColorFormatter(logging.Formatter):
    """Wraps each console line in the ANSI colour of its level."""

    COLORS = {
        logging.DEBUG: "\x1b[36m",
        logging.INFO: "\x1b[32m",
        logging.WARNING: "\x1b[33m",
        logging.ERROR: "\x1b[31m",
        logging.CRITICAL: "\x1b[31;1m",
    }
    RESET = "\x1b[0m"

    def __init__(self) -> None:
        super().__init__(LOG_FORMAT, datefmt=DATE_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        color = self.COLORS.get(record.levelno)
        return f"{color}{line}{self.RESET}" if color else line


def setup_logging(
    level: Union[int, str, None] = None,
    log_dir: Optional[str] = None,
) -> None:
    """
    Configure console and rotating file logging.

    Parameters
    ----------
    level : int or str, optional
        Root level; defaults to LOG_LEVEL.
    log_dir : str, optional
        Directory for ``linker.log``; defaults to LOG_DIR.
    """
    level = level if level is not None else config.LOG_LEVEL
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    log_dir = log_dir or config.LOG_DIR

    root_logger = logging.getLogger()
    # Reloads under uvicorn --reload would otherwise stack duplicate handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.setLevel(level)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(LevelColorFormatter())
    root_logger.addHandler(console_handler)

    os.makedirs(log_dir, exist_ok=True)
    file_handler = TimedRotatingFileHandler(
        os.path.join(log_dir, "linker.log"),
        when="midnight",
        backupCount=config.LOG_BACKUP_DAYS,
        encoding="utf-8",
    )
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    root_logger.addHandler(file_handler)

    for name in PROPAGATED_LOGGERS:
        named = logging.getLogger(name)
        named.setLevel(level)
        named.propagate = True

    # httpx logs every request at INFO, including each TestRail case fetch
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))

    root_logger.info("Logging initialized (level %s, file %s)", logging.getLevelName(level), log_dir)

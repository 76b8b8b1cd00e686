import os
import sys
import logging
import logging.handlers
from datetime import datetime
from pathlib import Path
from typing import Optional

import pytz

from svitlo.log_context import UserContextFilter

KYIV_TZ = pytz.timezone('Europe/Kiev')
LOG_FILENAME = "svitlo.log"


def custom_time(*args):
    """Returns current time in Kyiv timezone for logging."""
    return datetime.now(KYIV_TZ).timetuple()


def setup_logging(name: str, log_dir: Optional[str] = None) -> logging.Logger:
    """
    Configure the application logger:
    1. stdout handler
    2. daily rotating file (7 days kept) when log_dir is given
    3. Kyiv timestamps and `user_<id> |` prefix from the request context
    4. level from LOG_LEVEL environment variable (INFO by default)

    Child loggers (`<name>.handlers`, `<name>.tasks`, ...) inherit the handlers.
    """
    logger = logging.getLogger(name)

    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    logger.setLevel(getattr(logging, log_level_str, logging.INFO))
    logger.propagate = False

    formatter = logging.Formatter(
        '%(asctime)s EET | %(user_id)s%(levelname)s:%(name)s:%(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    formatter.converter = custom_time
    user_filter = UserContextFilter()

    if logger.handlers:
        logger.handlers.clear()

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    stream_handler.addFilter(user_filter)
    logger.addHandler(stream_handler)

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        filename = log_path / LOG_FILENAME

        try:
            file_handler = logging.handlers.TimedRotatingFileHandler(
                filename=filename,
                when='midnight',
                interval=1,
                backupCount=7,
                encoding='utf-8'
            )
            file_handler.setFormatter(formatter)
            file_handler.addFilter(user_filter)
            file_handler.suffix = "%Y-%m-%d"
            logger.addHandler(file_handler)
        except (PermissionError, OSError) as e:
            # Volume mounted read-only or owned by another user
            print(f"Error setting up file logging to {filename}: {e}. Continuing with console logging only.", file=sys.stderr)

    # aiogram logs every polled update at INFO
    logging.getLogger('aiogram.event').setLevel(logging.WARNING)

    return logger

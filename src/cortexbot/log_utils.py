"""Logging setup for the cortexbot process.

Everything goes to a rotating debug log under ~/.cortexbot/; the console
gets INFO (or DEBUG with --debug) with a short format.
"""

import logging
import logging.handlers
from pathlib import Path
from typing import Optional, Union

LOG_DIR = Path.home() / ".cortexbot"
LOG_FILE = LOG_DIR / "debug.log"

FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
CONSOLE_FORMAT = "%(asctime)s %(levelname)s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# 5 MB per file, 3 backups
MAX_BYTES = 5 * 1024 * 1024
BACKUP_COUNT = 3

# Third-party loggers that are too chatty at DEBUG
_NOISY_LOGGERS = ("socketio", "engineio", "urllib3", "websocket")


def configure_logging(debug: bool = False, log_file: Optional[Union[str, Path]] = None) -> Path:
    """Configure the root logger.

    Safe to call more than once: existing root handlers are replaced.

    Args:
        debug: Show DEBUG messages on the console.
        log_file: Debug log path; defaults to ~/.cortexbot/debug.log.

    Returns:
        The path of the debug log.
    """
    path = Path(log_file) if log_file else LOG_FILE
    path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=MAX_BYTES, backupCount=BACKUP_COUNT, encoding="utf-8"
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG if debug else logging.INFO)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))

    # basicConfig is a no-op once handlers exist, so configure root directly
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()
    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return path

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

from navtunnel.local.config import effective_settings as config


class MainFormatter(logging.Formatter):
    """A formatter that prints regular logs in full and child process output raw."""

    def format(self, record):
        # Output of the OpenVPN child is logged under 'proc.*' and is already a full line.
        if record.name.startswith('proc.'):
            return record.getMessage()

        original_format = self._style._fmt
        self._style._fmt = '%(asctime)s - %(levelname)-8s - [%(name)s] - %(message)s'
        formatted_message = super().format(record)
        self._style._fmt = original_format
        return formatted_message


def _resolve_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(console_level: Union[int, str, None] = None, log_dir: Optional[Path] = None) -> None:
    """
    Configures the root logger for the application.

    Sets up a console handler and, when a log directory is available, a
    rotating file handler. Existing handlers are cleared first to prevent
    duplication on repeated calls.

    :param console_level: Level for the console output; defaults to CONSOLE_LOG_LEVEL.
    :param log_dir: Directory for the log file; defaults to the platform log dir.
    """
    if console_level is None:
        console_level = config.CONSOLE_LOG_LEVEL
    log_dir = log_dir if log_dir is not None else config.LOG_DIR

    root_logger = logging.getLogger()
    # Root captures everything; handlers filter.
    root_logger.setLevel(logging.DEBUG)

    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    #* --- Console Handler ---
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(_resolve_level(console_level))
    console_handler.setFormatter(MainFormatter())
    root_logger.addHandler(console_handler)

    #* --- Rotating File Handler ---
    if log_dir is None:
        return
    try:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            Path(log_dir) / config.LOG_FILE_NAME,
            maxBytes=config.LOG_FILE_MAX_BYTES,
            backupCount=config.LOG_FILE_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter('%(asctime)s - %(levelname)-8s - [%(name)s] - %(message)s')
        )
        root_logger.addHandler(file_handler)
    except OSError as e:
        root_logger.error(f"Failed to initialize file logging in '{log_dir}': {e}. Logging to file is disabled.")

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from config.settings import Settings

LOG_LEVEL_ENV_VAR = "EXHIBIT_SYNC_LOG_LEVEL"
LOG_FILE_MAX_BYTES_DEFAULT = 5 * 1024 * 1024  # 5 MB
LOG_FILE_BACKUP_COUNT_DEFAULT = 3


def resolve_log_level(default: int = logging.INFO) -> int:
    """Read the level name from EXHIBIT_SYNC_LOG_LEVEL, falling back to ``default``."""
    name = os.environ.get(LOG_LEVEL_ENV_VAR, "").strip().upper()
    level = logging.getLevelName(name) if name else default
    return level if isinstance(level, int) else default


def setup_logging(
    logger_name: str,
    log_level: Optional[int] = None,
    log_dir: Optional[Path] = None,
    log_file_max_bytes: int = LOG_FILE_MAX_BYTES_DEFAULT,
    log_file_backup_count: int = LOG_FILE_BACKUP_COUNT_DEFAULT,
    console_output: bool = True
):
    """
    Configures and returns a logger instance.

    Args:
        logger_name: Name of the logger the container hands to every component.
        log_level: Minimum level to capture. Defaults to EXHIBIT_SYNC_LOG_LEVEL or INFO.
        log_dir: Directory for the rotating log file. Defaults to Settings.LOGS_DIR.
        log_file_max_bytes: Maximum size of a log file before rotation.
        log_file_backup_count: Number of backup log files to keep.
        console_output: Whether to also log to stderr (stdout is left to CLI output).

    Returns:
        A configured logger instance.
    """
    log_level = log_level if log_level is not None else resolve_log_level()
    log_dir = log_dir or Settings.LOGS_DIR
    log_dir.mkdir(parents=True, exist_ok=True)
    logger = logging.getLogger(logger_name)

    # Engine restarts within one process reuse the configured handlers
    if logger.handlers:
        logger.setLevel(log_level)
        return logger

    logger.setLevel(log_level)

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - [%(module)s.%(funcName)s:%(lineno)d] - %(message)s"
    )

    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    sanitized_logger_name = "".join(c if c.isalnum() or c in ['_', '-'] else '_' for c in logger_name)
    log_file_path = log_dir / f"{sanitized_logger_name}.log"

    file_handler = RotatingFileHandler(
        log_file_path,
        maxBytes=log_file_max_bytes,
        backupCount=log_file_backup_count,
        encoding='utf-8'
    )
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    return logger

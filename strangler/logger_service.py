"""
logger_service.py - Logging setup

Configures Python's logging module from the "logging" section of the
config file:

    "logging": {
        "log_file": "logs/strangler.log",
        "log_level": "INFO",
        "console_output": true
    }

Every strangler module logs through logging.getLogger(__name__), so one
call to setup_logging() at startup routes all of them to the same file and
console.
"""

import logging
import os
from typing import Any, Dict

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

DEFAULT_LOG_FILE = "logs/strangler.log"
DEFAULT_LOG_LEVEL = "INFO"


def _resolve_level(level_name: str) -> int:
    level = getattr(logging, str(level_name).upper(), None)
    if not isinstance(level, int):
        raise ValueError(f"Invalid log_level: {level_name}")
    return level


def setup_logging(config: Dict[str, Any]) -> logging.Logger:
    """
    Configure the root logger with a file handler and optional console handler.

    Existing root handlers are replaced, so calling this twice does not
    duplicate output.

    Args:
        config: Full configuration dictionary (uses its "logging" section)

    Returns:
        logging.Logger: The configured root logger

    Raises:
        ValueError: Unknown log_level
    """
    settings = config.get("logging", {}) or {}
    log_file = settings.get("log_file", DEFAULT_LOG_FILE)
    log_level = settings.get("log_level", DEFAULT_LOG_LEVEL)
    console_output = settings.get("console_output", True)

    level = _resolve_level(log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    if console_output:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    logger.info(f"Logging initialized. File: {log_file or '(none)'}, Level: {str(log_level).upper()}")
    return root_logger

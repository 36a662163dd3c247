# Logging_Config.py
# Description: Configuration for logging
#
# Imports
import logging
import logging.handlers
import sys
from typing import Dict, Any
#
# 3rd-Party Imports
from loguru import logger as loguru_logger
#
# Local Imports
from inventory_sync.config import get_log_file_path
#
########################################################################################################################
#
# Functions:

LOG_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)s:%(lineno)d - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_LOGURU_LEVEL_MAPPING = {
    "TRACE": logging.DEBUG, "DEBUG": logging.DEBUG, "INFO": logging.INFO,
    "SUCCESS": logging.INFO, "WARNING": logging.WARNING, "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def sink_to_standard_logging(message):
    """Loguru sink that re-emits each record through the standard logging module."""
    record = message.record
    std_level = _LOGURU_LEVEL_MAPPING.get(record["level"].name, logging.INFO)
    std_logger = logging.getLogger(record["name"])
    if record["exception"]:
        std_logger.log(std_level, record["message"], exc_info=record["exception"])
    else:
        std_logger.log(std_level, record["message"])


def configure_logging(settings: Dict[str, Any], log_to_console: bool = True) -> logging.Logger:
    """
    Sets up the root logger and routes loguru through it.

    Console output goes to stderr at `[general] log_level`. When
    `[logging] log_to_file` is set, a RotatingFileHandler is added using the
    `[logging]` size, backup count and level settings.

    Returns:
        The configured root logger.
    """
    loguru_logger.remove()
    loguru_logger.add(sink_to_standard_logging, format="{message}", level="TRACE")

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    log_level_str = str(settings.get("general", {}).get("log_level", "INFO")).upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    root_logger.setLevel(log_level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    if log_to_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    logging_section = settings.get("logging", {})
    if logging_section.get("log_to_file", False):
        log_file_path = get_log_file_path(settings)
        try:
            log_file_path.parent.mkdir(parents=True, exist_ok=True)
            file_log_level = getattr(logging, str(logging_section.get("file_log_level", "INFO")).upper(),
                                     logging.INFO)
            file_handler = logging.handlers.RotatingFileHandler(
                log_file_path,
                maxBytes=int(logging_section.get("log_max_bytes", 10485760)),
                backupCount=int(logging_section.get("log_backup_count", 5)),
                encoding="utf-8",
            )
            file_handler.setLevel(file_log_level)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)
            root_logger.setLevel(min(root_logger.level, file_log_level))
        except OSError as e:
            logging.warning(f"Could not set up file logging at {log_file_path}: {e}")

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    loguru_logger.debug(f"Logging configured (level {logging.getLevelName(root_logger.level)})")
    return root_logger

#
# End of Logging_Config.py
########################################################################################################################

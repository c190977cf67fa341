# Logging_Config.py
# Description: Loguru sink configuration for tablesync.
#
# Imports
import logging
import os
import sys
from typing import Any, Dict, Optional
#
# 3rd-Party Imports
from loguru import logger
#
# Local Imports
from .Metrics.metrics_logger import METRIC_LEVEL
#
########################################################################################################################
#
# Functions:

DEFAULT_APP_LOG_PATH = '~/.local/share/tablesync/Logs/tablesync.log'
DEFAULT_METRICS_LOG_PATH = '~/.local/share/tablesync/Logs/tablesync_metrics.json'


class InterceptHandler(logging.Handler):
    """Routes records from the standard `logging` module (requests, urllib3) into loguru."""

    def emit(self, record: logging.LogRecord):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk back to the frame that issued the logging call so loguru reports the right origin.
        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _ensure_log_dir_exists(file_path: str) -> str:
    """Ensure the directory for the log file exists."""
    expanded_path = os.path.expanduser(file_path)
    log_dir = os.path.dirname(expanded_path)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    return expanded_path


def setup_logger(
    log_level: str = "INFO",
    console_format: str = "{time:YYYY-MM-DD HH:mm:ss} - {level} - {message}",
    app_log_path: Optional[str] = DEFAULT_APP_LOG_PATH,
    metrics_log_path: Optional[str] = None,
    intercept_stdlib: bool = True,
):
    """
    Sets up Loguru sinks for console, a standard application log, and a JSON metrics log.

    Args:
        log_level (str): The minimum log level to output (e.g., "DEBUG", "INFO").
        console_format (str): The format string for console output.
        app_log_path (Optional[str]): Path for the standard text log file. If None, this sink is disabled.
        metrics_log_path (Optional[str]): Path for the structured JSON metrics log. If None, this sink is disabled.
        intercept_stdlib (bool): Route standard `logging` records into loguru.

    Returns:
        The configured logger instance.
    """
    logger.remove()

    logger.add(
        sys.stderr,
        level=log_level.upper(),
        format=console_format,
    )

    if app_log_path:
        path = _ensure_log_dir_exists(app_log_path)
        logger.add(
            path,
            level=log_level.upper(),
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
            rotation="10 MB",
            retention="7 days",
            enqueue=True,
            backtrace=True,
            diagnose=False,
        )
        logger.info(f"Application logs will be written to: {path}")

    if metrics_log_path:
        path = _ensure_log_dir_exists(metrics_log_path)
        logger.add(
            path,
            level=METRIC_LEVEL,
            filter=lambda record: record["level"].name == METRIC_LEVEL,
            serialize=True,
            rotation="10 MB",
            retention=5,
            enqueue=True,
        )
        logger.info(f"JSON metrics logs will be written to: {path}")

    if intercept_stdlib:
        logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
        logging.getLogger("urllib3").setLevel(logging.WARNING)

    return logger


def configure_logging_from_settings(settings: Dict[str, Any]):
    """Applies the `[logging]` section of a loaded config dict."""
    logging_section = settings.get("logging", {}) or {}
    return setup_logger(
        log_level=logging_section.get("log_level", "INFO"),
        app_log_path=logging_section.get("app_log_path") or None,
        metrics_log_path=logging_section.get("metrics_log_path") or None,
    )

#
# End of Logging_Config.py
########################################################################################################################

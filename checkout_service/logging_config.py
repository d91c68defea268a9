"""
logging_config.py — Centralized Logging Configuration for the Checkout Service

This module configures unified logging behavior for the entire application.
It ensures that all modules log messages consistently to the console and,
optionally, to a file.

Features:
    • Console output (stdout) plus an optional persistent log file
    • Process ID tagging for multi-worker visibility
    • Standardized log format for all modules
    • Reduced verbosity for external dependencies (httpx, httpcore, uvicorn)
"""

import logging
import sys

from .config import LOG_FILE, LOG_LEVEL


def setup_logging(level=None, log_file=None):
    """
    Configures the global logging system for the application.

    The configuration includes:
        - Log level: taken from `LOG_LEVEL` (default INFO) unless given explicitly
        - Log format: timestamp, log level, process ID, logger name and message
        - Output destinations:
            1. Console (stdout): real-time logs, Docker/Kubernetes compatible
            2. File: only when `LOG_FILE` (or `log_file`) is set
        - Reduced verbosity for third-party HTTP libraries

    Args:
        level (str | int | None): Overrides the configured log level.
        log_file (str | None): Overrides the configured log file path.
    """
    log_format = '%(asctime)s - %(levelname)s - [PID:%(process)d] - %(name)s - %(message)s'

    handlers = [logging.StreamHandler(sys.stdout)]
    target_file = log_file or LOG_FILE
    if target_file:
        handlers.append(logging.FileHandler(target_file))

    logging.basicConfig(
        level=level or LOG_LEVEL,
        format=log_format,
        handlers=handlers,
        force=True,
    )

    # Reduce verbosity from external libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name):
    """
    Returns a logger instance for a given module or component name.

    Args:
        name (str): The logger name, typically the module's __name__.

    Returns:
        logging.Logger: A logger that follows the global format and handlers.
    """
    return logging.getLogger(name)

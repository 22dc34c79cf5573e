"""
File Logger Utility

Configures logging for an extension process to write to both console and
rotating files in the log directory.
"""

import logging
import sys
from pathlib import Path
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import Optional


def setup_file_logger(
    service_name: str,
    log_level: str = "INFO",
    output_dir: str = "logs",
    console_output: bool = True,
    file_output: bool = True,
    logger_name: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,  # 10 MB
    backup_count: int = 5
) -> logging.Logger:
    """
    Set up logging to write to both console and file.

    Args:
        service_name: Name of the extension (e.g., "exampledriver"); names the log file
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        output_dir: Directory to write log files
        console_output: Whether to also output to console
        file_output: Whether to write a log file at all
        logger_name: Logger to configure (defaults to service_name)
        max_bytes: Maximum size of each log file before rotation
        backup_count: Number of backup files to keep

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name or service_name)
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # Remove any existing handlers
    logger.handlers.clear()

    detailed_formatter = logging.Formatter(
        fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_formatter = logging.Formatter(
        fmt=f'[{service_name}] %(levelname)s: %(message)s'
    )

    log_file = None
    if file_output:
        output_path = Path(output_dir)
        output_path.mkdir(parents=True, exist_ok=True)

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = output_path / f"{service_name}_{timestamp}.log"

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setLevel(logging.DEBUG)  # Capture all levels in file
        file_handler.setFormatter(detailed_formatter)
        logger.addHandler(file_handler)

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(getattr(logging, log_level.upper(), logging.INFO))
        console_handler.setFormatter(console_formatter)
        logger.addHandler(console_handler)

    if log_file is not None:
        logger.info(f"File logging initialized: {log_file}")

    return logger

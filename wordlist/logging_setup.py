"""
Logging Setup
=============
Configures the package logger once per process (main process and every
worker process).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None):
    """Configure the 'wordlist' logger with console and optional file output."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    package_logger = logging.getLogger("wordlist")
    package_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    # Console handler
    if not any(
        type(h) is logging.StreamHandler for h in package_logger.handlers
    ):
        console = logging.StreamHandler()
        console.setLevel(level)
        console.setFormatter(formatter)
        package_logger.addHandler(console)

    # File handler
    if log_file and not any(
        isinstance(h, logging.FileHandler)
        and h.baseFilename == str(Path(log_file).absolute())
        for h in package_logger.handlers
    ):
        log_dir = Path(log_file).parent
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        package_logger.addHandler(file_handler)

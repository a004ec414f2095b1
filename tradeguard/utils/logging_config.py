"""Logging configuration."""
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

import structlog

from tradeguard.core.config import LoggingConfig, logging_config


def setup_logging(config: Optional[LoggingConfig] = None, log_to_file: bool = True):
    """Configure structured logging.

    Args:
        config: Logging settings (defaults to the module-level instance)
        log_to_file: Also write JSON lines to the rotating log file
    """
    config = config or logging_config
    level = getattr(logging, config.log_level.upper())

    # Configure standard library logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=level,
    )

    # Configure structlog
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if not log_to_file:
        return

    # Rotating file handler
    log_path = Path(config.log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(
        log_path,
        maxBytes=config.log_file_max_size_mb * 1024 * 1024,
        backupCount=config.log_file_backup_count,
    )
    file_handler.setLevel(level)

    root_logger = logging.getLogger()
    root_logger.addHandler(file_handler)

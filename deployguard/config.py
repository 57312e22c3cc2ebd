"""Logging configuration for deployguard."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

from pythonjsonlogger import jsonlogger

from deployguard.core.settings import Settings, settings as default_settings


def setup_logging(
    config: Optional[Settings] = None,
    log_file: Optional[str] = "deployguard.log",
    stream=None,
    console: bool = True,
) -> None:
    """Configure application logging.

    Args:
        config: Settings to read the level and log directory from
        log_file: Rotating log file name, or None for console only
        stream: Console stream (stdout by default)
        console: Whether to attach the JSON console handler at all
    """
    config = config or default_settings
    log_level = getattr(logging, config.log_level)

    json_formatter = jsonlogger.JsonFormatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s",
        rename_fields={"asctime": "timestamp", "levelname": "level"},
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    if console:
        console_handler = logging.StreamHandler(stream or sys.stdout)
        console_handler.setFormatter(json_formatter)
        console_handler.setLevel(log_level)
        root_logger.addHandler(console_handler)

    if log_file:
        config.log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            config.log_dir / log_file,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
        )
        file_handler.setFormatter(json_formatter)
        file_handler.setLevel(log_level)
        root_logger.addHandler(file_handler)

    # Reduce noise from libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(
        "Logging configured",
        extra={
            "log_level": config.log_level,
            "app_name": config.app_name,
            "app_version": config.app_version,
            "environment": config.environment,
        },
    )

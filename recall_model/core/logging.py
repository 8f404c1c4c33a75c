"""
Logging configuration
"""
import logging
import sys
from pathlib import Path
from typing import Optional

from loguru import logger
from recall_model.core.config import settings


class InterceptHandler(logging.Handler):
    """
    Intercept standard logging and redirect to loguru
    """

    def emit(self, record: logging.LogRecord) -> None:
        # Get corresponding Loguru level if it exists
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller from where originated the logged message
        frame, depth = logging.currentframe(), 2
        while frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def setup_logging(level: Optional[str] = None):
    """
    Setup logging configuration

    Library modules log through the standard ``logging`` module; this routes
    every record into loguru sinks.
    """
    level = level or settings.LOG_LEVEL

    # Remove default logger
    logger.remove()

    logger.add(
        sys.stderr,
        colorize=True,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        level=level,
    )

    # Add file logger for production
    if settings.ENVIRONMENT == "production":
        log_path = Path(settings.LOG_DIR)
        log_path.mkdir(exist_ok=True)

        logger.add(
            log_path / "recall_model_{time:YYYY-MM-DD}.log",
            rotation="100 MB",
            retention="30 days",
            enqueue=True,
            serialize=False,
            level=level,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
        )

    # Intercept everything at the root logger
    logging.root.handlers = [InterceptHandler()]
    logging.root.setLevel(level)

    # Remove every other logger's handlers and propagate to root logger
    for name in logging.root.manager.loggerDict.keys():
        logging.getLogger(name).handlers = []
        logging.getLogger(name).propagate = True

    logger.info(f"Logging configured - Level: {level}, Environment: {settings.ENVIRONMENT}")

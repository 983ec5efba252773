"""
Logging configuration using loguru.
"""
import sys
from pathlib import Path
from typing import Optional
from loguru import logger
from reminder_engine.config import settings
from reminder_engine.middleware.correlation import correlation_id_filter


def setup_logger(debug: Optional[bool] = None, log_dir: Optional[str] = None):
    """Configure loguru logger with correlation ID support."""
    debug = settings.debug if debug is None else debug
    log_dir = settings.log_dir if log_dir is None else log_dir

    # Remove default handler
    logger.remove()

    # Console handler; correlation ID is the request ID or the job ID
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <dim>{extra[correlation_id]}</dim> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        level="DEBUG" if debug else "INFO",
        colorize=True,
        filter=correlation_id_filter,
    )

    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)

        logger.add(
            path / "reminder-engine.log",
            rotation="10 MB",
            retention="7 days",
            level="INFO",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[correlation_id]} | {name}:{function}:{line} - {message} | {extra}",
            filter=correlation_id_filter,
        )

    logger.info("Logger initialized with correlation ID support")

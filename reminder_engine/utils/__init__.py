"""
Utility modules for the reminder engine.
"""
from reminder_engine.utils.logger import setup_logger
from reminder_engine.utils.errors import (
    ErrorKind,
    EngineError,
    ValidationError,
    PermanentError,
    EntityNotFoundError,
    TransientError,
    classify,
    describe_error,
)
from reminder_engine.utils.formatting import resolve_zone, format_time, format_date, parse_clock

__all__ = [
    "setup_logger",
    "ErrorKind",
    "EngineError",
    "ValidationError",
    "PermanentError",
    "EntityNotFoundError",
    "TransientError",
    "classify",
    "describe_error",
    "resolve_zone",
    "format_time",
    "format_date",
    "parse_clock",
]

"""
Error taxonomy and classification for job processing.

Every failure a worker sees ends up in one of three buckets:

    validation - malformed or impossible input, never retried
    permanent  - referenced data is gone or terminal, never retried
    transient  - I/O, connectivity or rate limiting, retried with backoff

Errors raised by this codebase carry their kind explicitly. Foreign
exceptions (drivers, HTTP clients) are mapped by type, and only as a last
resort by message text.
"""
from enum import Enum
from typing import Optional, Dict, Any

import aiohttp
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import OperationalError, DisconnectionError, TimeoutError as SQLAlchemyTimeoutError


class ErrorKind(str, Enum):
    """How a failed job should be treated."""

    VALIDATION = "validation"
    PERMANENT = "permanent"
    TRANSIENT = "transient"


class EngineError(Exception):
    """Base error carrying an explicit classification."""

    kind: ErrorKind = ErrorKind.TRANSIENT

    def __init__(self, message: str, kind: Optional[ErrorKind] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind
        self.details = details or {}


class ValidationError(EngineError):
    """Job payload failed schema validation."""

    kind = ErrorKind.VALIDATION


class PermanentError(EngineError):
    """Failure that cannot heal by retrying."""

    kind = ErrorKind.PERMANENT


class EntityNotFoundError(PermanentError):
    """A row the operation requires does not exist."""

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} {entity_id} not found", details={"entity": entity, "id": entity_id})
        self.entity = entity
        self.entity_id = entity_id


class TransientError(EngineError):
    """Connectivity, timeout or rate-limit failure."""

    kind = ErrorKind.TRANSIENT


_TRANSIENT_TYPES = (
    ConnectionError,
    TimeoutError,
    aiohttp.ClientError,
    OperationalError,
    DisconnectionError,
    SQLAlchemyTimeoutError,
)

_VALIDATION_MARKERS = ("invalid", "validation")
_TRANSIENT_MARKERS = ("connection", "timeout", "refused", "rate limit")
_PERMANENT_MARKERS = ("not found",)


def classify(error: BaseException) -> ErrorKind:
    """
    Classify an error as transient, permanent or validation.

    Args:
        error: The exception raised while processing a job

    Returns:
        ErrorKind; unknown errors default to TRANSIENT so work is retried
        rather than silently dropped
    """
    if isinstance(error, EngineError):
        return error.kind
    if isinstance(error, PydanticValidationError):
        return ErrorKind.VALIDATION
    if isinstance(error, _TRANSIENT_TYPES):
        return ErrorKind.TRANSIENT

    message = str(error).lower()
    if any(marker in message for marker in _VALIDATION_MARKERS):
        return ErrorKind.VALIDATION
    if any(marker in message for marker in _TRANSIENT_MARKERS):
        return ErrorKind.TRANSIENT
    if any(marker in message for marker in _PERMANENT_MARKERS):
        return ErrorKind.PERMANENT

    return ErrorKind.TRANSIENT


def describe_error(error: BaseException) -> str:
    """Short "Type: message" string for logs and dead-letter records."""
    message = str(error) or repr(error)
    return f"{type(error).__name__}: {message}"[:1000]

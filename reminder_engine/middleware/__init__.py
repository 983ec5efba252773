"""
Middleware modules for the reminder engine.
"""
from reminder_engine.middleware.correlation import (
    CorrelationIdMiddleware,
    get_correlation_id,
    bind_correlation_id,
    correlation_id_filter,
)

__all__ = ["CorrelationIdMiddleware", "get_correlation_id", "bind_correlation_id", "correlation_id_filter"]

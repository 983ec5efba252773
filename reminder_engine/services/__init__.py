"""
Service layer for the reminder engine.
"""
from reminder_engine.services.domain_store import DomainStore, EntityKind
from reminder_engine.services.dispatch import NotificationDispatcher, DispatchResult
from reminder_engine.services.dead_letter import DeadLetterHandler
from reminder_engine.services.scheduler import ReminderScheduler
from reminder_engine.services.retention_service import RetentionService
from reminder_engine.services.engine import ReminderEngine

__all__ = [
    "DomainStore",
    "EntityKind",
    "NotificationDispatcher",
    "DispatchResult",
    "DeadLetterHandler",
    "ReminderScheduler",
    "RetentionService",
    "ReminderEngine",
]

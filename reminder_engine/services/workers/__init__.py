"""
Category workers: one per reminder kind.
"""
from reminder_engine.services.workers.base import CategoryWorker, ProcessResult, OutgoingNotification
from reminder_engine.services.workers.medication import MedicationReminderWorker, medication_idempotency_key
from reminder_engine.services.workers.appointment import AppointmentReminderWorker, appointment_idempotency_key
from reminder_engine.services.workers.shift import ShiftReminderWorker, shift_idempotency_key
from reminder_engine.services.workers.refill import RefillAlertWorker, refill_idempotency_key

__all__ = [
    "CategoryWorker",
    "ProcessResult",
    "OutgoingNotification",
    "MedicationReminderWorker",
    "AppointmentReminderWorker",
    "ShiftReminderWorker",
    "RefillAlertWorker",
    "medication_idempotency_key",
    "appointment_idempotency_key",
    "shift_idempotency_key",
    "refill_idempotency_key",
]

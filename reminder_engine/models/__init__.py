"""
Database models for the reminder engine.
"""
from reminder_engine.models.family import User, Family, FamilyMember, CareRecipient
from reminder_engine.models.medication import Medication, MedicationLog
from reminder_engine.models.appointment import Appointment
from reminder_engine.models.shift import CaregiverShift
from reminder_engine.models.notification import Notification, PushSubscription
from reminder_engine.models.queue import QueueJob, DeadLetterRecord
from reminder_engine.models.scheduler_run import SchedulerRun

__all__ = [
    "User",
    "Family",
    "FamilyMember",
    "CareRecipient",
    "Medication",
    "MedicationLog",
    "Appointment",
    "CaregiverShift",
    "Notification",
    "PushSubscription",
    "QueueJob",
    "DeadLetterRecord",
    "SchedulerRun",
]

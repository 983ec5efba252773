"""
Enumerations stored as plain strings in the database.
"""
from enum import Enum


class MemberRole(str, Enum):
    ADMIN = "ADMIN"
    CAREGIVER = "CAREGIVER"
    VIEWER = "VIEWER"


class AppointmentStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


class ShiftStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class NotificationType(str, Enum):
    MEDICATION_REMINDER = "MEDICATION_REMINDER"
    APPOINTMENT_REMINDER = "APPOINTMENT_REMINDER"
    SHIFT_REMINDER = "SHIFT_REMINDER"
    REFILL_ALERT = "REFILL_ALERT"


class NotificationChannel(str, Enum):
    """Delivery channel of a dispatch job."""
    PUSH = "PUSH"
    EMAIL = "EMAIL"
    SMS = "SMS"
    IN_APP = "IN_APP"


class Priority(str, Enum):
    NORMAL = "normal"
    HIGH = "high"

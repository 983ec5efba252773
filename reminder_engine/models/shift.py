"""
Caregiver shift model.
"""
from sqlalchemy import Column, String, ForeignKey
from reminder_engine.database import Base, UTCDateTime
from reminder_engine.models.enums import ShiftStatus
from reminder_engine.models.family import new_id, utcnow


class CaregiverShift(Base):
    """A block of time a caregiver is responsible for the care recipient."""

    __tablename__ = "caregiver_shifts"

    id = Column(String(36), primary_key=True, default=new_id)
    care_recipient_id = Column(String(36), ForeignKey("care_recipients.id", ondelete="CASCADE"), nullable=False, index=True)
    caregiver_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    start_time = Column(UTCDateTime, nullable=False, index=True)
    end_time = Column(UTCDateTime, nullable=False)
    status = Column(String(20), nullable=False, default=ShiftStatus.SCHEDULED.value, index=True)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

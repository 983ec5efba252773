"""
Appointment model.
"""
from sqlalchemy import Column, String, ForeignKey
from reminder_engine.database import Base, UTCDateTime
from reminder_engine.models.enums import AppointmentStatus
from reminder_engine.models.family import new_id, utcnow


class Appointment(Base):
    """A medical appointment for a care recipient."""

    __tablename__ = "appointments"

    id = Column(String(36), primary_key=True, default=new_id)
    care_recipient_id = Column(String(36), ForeignKey("care_recipients.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    location = Column(String(300), nullable=True)
    start_time = Column(UTCDateTime, nullable=False, index=True)
    status = Column(String(20), nullable=False, default=AppointmentStatus.SCHEDULED.value, index=True)

    # Family member driving the care recipient, if any
    transport_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

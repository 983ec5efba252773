"""
Medication and dose log models.
"""
from sqlalchemy import Column, String, Integer, Boolean, ForeignKey, JSON
from reminder_engine.database import Base, UTCDateTime
from reminder_engine.models.family import new_id, utcnow


class Medication(Base):
    """A medication with daily dose times and optional supply tracking."""

    __tablename__ = "medications"

    id = Column(String(36), primary_key=True, default=new_id)
    care_recipient_id = Column(String(36), ForeignKey("care_recipients.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    dosage = Column(String(100), nullable=False)
    scheduled_times = Column(JSON, nullable=False, default=list)  # ["08:00", "20:00"], care recipient's local time
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    # Supply tracking; both null when the family does not track supply
    current_supply = Column(Integer, nullable=True)
    refill_at = Column(Integer, nullable=True)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)


class MedicationLog(Base):
    """A dose given, skipped or missed for one scheduled time."""

    __tablename__ = "medication_logs"

    id = Column(String(36), primary_key=True, default=new_id)
    medication_id = Column(String(36), ForeignKey("medications.id", ondelete="CASCADE"), nullable=False, index=True)
    scheduled_time = Column(UTCDateTime, nullable=False, index=True)
    status = Column(String(20), nullable=False, default="GIVEN")  # GIVEN, SKIPPED, MISSED
    logged_by_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    logged_at = Column(UTCDateTime, default=utcnow, nullable=False)

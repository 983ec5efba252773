"""
Scheduler run log model.
"""
from sqlalchemy import Column, Integer, String, Text
from reminder_engine.database import Base, UTCDateTime


class SchedulerRun(Base):
    """One scan of one entity kind by the scheduler."""

    __tablename__ = "scheduler_runs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_name = Column(String(50), nullable=False, index=True)  # medication_scan, refill_check, ...
    status = Column(String(20), nullable=False)  # STARTED, COMPLETED, FAILED

    started_at = Column(UTCDateTime, nullable=False, index=True)
    completed_at = Column(UTCDateTime, nullable=True)
    duration_ms = Column(Integer, nullable=True)
    items_processed = Column(Integer, nullable=True)
    error = Column(Text, nullable=True)

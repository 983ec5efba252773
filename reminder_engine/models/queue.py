"""
Queue job and dead-letter models.
"""
from sqlalchemy import Column, String, Integer, Text, JSON, Index
from reminder_engine.database import Base, UTCDateTime
from reminder_engine.models.family import new_id, utcnow


class QueueJob(Base):
    """
    A unit of work on a category queue.

    The primary key is the caller's deterministic job id, so enqueueing the
    same trigger twice collapses into one row.
    """

    __tablename__ = "queue_jobs"
    __table_args__ = (
        Index("ix_queue_jobs_claim", "category", "status", "available_at"),
    )

    id = Column(String(255), primary_key=True)
    category = Column(String(50), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    status = Column(String(20), nullable=False)  # see broker.jobs.JobStatus

    attempt = Column(Integer, nullable=False, default=0)  # attempts started so far
    max_attempts = Column(Integer, nullable=False)

    available_at = Column(UTCDateTime, nullable=False)
    locked_until = Column(UTCDateTime, nullable=True)

    last_error = Column(Text, nullable=True)
    error_kind = Column(String(20), nullable=True)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False, index=True)
    finished_at = Column(UTCDateTime, nullable=True)


class DeadLetterRecord(Base):
    """Terminal failure of a job, kept for audit and manual replay."""

    __tablename__ = "dead_letters"

    id = Column(String(36), primary_key=True, default=new_id)
    original_category = Column(String(50), nullable=False, index=True)
    original_job_id = Column(String(255), nullable=False, index=True)
    original_payload = Column(JSON, nullable=False, default=dict)
    error = Column(Text, nullable=False)
    error_kind = Column(String(20), nullable=False)
    attempts_made = Column(Integer, nullable=False, default=0)
    failed_at = Column(UTCDateTime, nullable=False, index=True)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

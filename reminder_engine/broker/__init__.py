"""
Durable job queue: categories, broker and worker pools.
"""
from reminder_engine.broker.jobs import (
    Job,
    JobCategory,
    JobStatus,
    medication_job_id,
    appointment_job_id,
    shift_job_id,
    refill_job_id,
    dispatch_job_id,
    dead_letter_job_id,
    replay_job_id,
)
from reminder_engine.broker.worker import WorkerHandle
from reminder_engine.broker.broker import QueueBroker

__all__ = [
    "Job",
    "JobCategory",
    "JobStatus",
    "QueueBroker",
    "WorkerHandle",
    "medication_job_id",
    "appointment_job_id",
    "shift_job_id",
    "refill_job_id",
    "dispatch_job_id",
    "dead_letter_job_id",
    "replay_job_id",
]

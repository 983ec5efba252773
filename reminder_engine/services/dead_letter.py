"""
Dead-letter handler: the terminal, human-visible failure channel.
"""
from typing import Optional

from loguru import logger

from reminder_engine.broker import Job, QueueBroker
from reminder_engine.channels import AlertSink, dead_letter_alert
from reminder_engine.schemas.jobs import DeadLetterJob, validate_job_payload
from reminder_engine.utils.errors import TransientError


class DeadLetterHandler:
    """
    Logs, alerts on and persists jobs that failed for good.

    A failing alert is logged and ignored. A failing store write raises
    TransientError so the broker retries the dead-letter job; on its last
    attempt the broker logs the full payload. Records are never
    re-enqueued from here; replay is an operator action on the broker.
    """

    def __init__(self, broker: QueueBroker, alert: Optional[AlertSink] = None):
        self.broker = broker
        self.alert = alert

    async def __call__(self, job: Job) -> Optional[str]:
        try:
            record = validate_job_payload(DeadLetterJob, job.payload, "DeadLetterJob")
        except Exception as e:
            logger.bind(job_id=job.id, payload=job.payload).critical(f"Unreadable dead-letter job {job.id}: {e}")
            return None
        return await self.handle(record)

    async def handle(self, record: DeadLetterJob) -> str:
        """
        Process one dead-letter record.

        Returns:
            The persisted record id

        Raises:
            TransientError: The record could not be stored
        """
        log = logger.bind(
            original_category=record.original_category,
            original_job_id=record.original_job_id,
            error_kind=record.error_kind,
            attempts_made=record.attempts_made,
            failed_at=record.failed_at.isoformat(),
        )
        log.error(
            f"Job {record.original_job_id} ({record.original_category}) failed permanently "
            f"after {record.attempts_made} attempt(s): {record.error}"
        )

        if self.alert is not None and self.alert.enabled:
            try:
                await self.alert.post(dead_letter_alert(
                    category=record.original_category,
                    job_id=record.original_job_id,
                    error=record.error,
                    error_kind=record.error_kind,
                    attempts=record.attempts_made,
                ))
            except Exception as e:
                log.warning(f"Dead-letter alert failed: {e}")

        try:
            record_id = await self.broker.save_dead_letter(record)
        except Exception as e:
            log.error(f"Failed to persist dead-letter record for {record.original_job_id}: {e}")
            raise TransientError(f"Dead-letter record for {record.original_job_id} not stored: {e}") from e

        log.info(f"Dead-letter record {record_id} stored")
        return record_id

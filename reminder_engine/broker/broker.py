"""
SQL-backed queue broker.

Jobs live in the queue_jobs table keyed by their deterministic id. Worker
slots claim a job with a conditional UPDATE (only one slot can flip a row to
active) and hold it under a lease that they heartbeat while processing. A
lease that runs out makes the job claimable again, which is how stalled
workers are recovered.
"""
import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from loguru import logger
from sqlalchemy import select, update, and_, or_, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reminder_engine.broker.worker import WorkerHandle, Handler
from reminder_engine.broker.jobs import (
    Job,
    JobCategory,
    JobStatus,
    BLOCKING_STATUSES,
    CLAIMABLE_STATUSES,
    dead_letter_job_id,
    replay_job_id,
)
from reminder_engine.config import RetryConfig, RetryPolicy, WorkerPoolConfig
from reminder_engine.database import ping as ping_database
from reminder_engine.middleware.correlation import bind_correlation_id, correlation_id_var
from reminder_engine.models import QueueJob, DeadLetterRecord
from reminder_engine.schemas.jobs import DeadLetterJob, dump_payload
from reminder_engine.utils.errors import ErrorKind, EntityNotFoundError, TransientError, classify, describe_error

# How many candidate rows a slot looks at per claim attempt; losing a race
# for the first one moves on to the next instead of waiting a poll interval
CLAIM_BATCH_SIZE = 5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QueueBroker:
    """
    Durable at-least-once queue keyed by category.

    Args:
        session_factory: Session factory for the database holding the queue
        retry: Retry policies per category
        workers: Lease and polling settings
        clock: Returns "now" as an aware UTC datetime (overridable in tests)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        retry: Optional[RetryConfig] = None,
        workers: Optional[WorkerPoolConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._session_factory = session_factory
        self.retry = retry or RetryConfig()
        self.workers = workers or WorkerPoolConfig()
        self._clock = clock or _utcnow

    def now(self) -> datetime:
        return self._clock()

    def policy_for(self, category: JobCategory) -> RetryPolicy:
        return self.retry.policy_for(category.value)

    @property
    def visibility_timeout(self) -> timedelta:
        return timedelta(seconds=self.workers.visibility_timeout_seconds)

    async def enqueue(
        self,
        category: JobCategory,
        job_id: str,
        payload: Dict[str, Any],
        delay: Optional[timedelta] = None,
        max_attempts: Optional[int] = None,
    ) -> bool:
        """
        Add a job unless one with the same id is present and not completed.

        A completed job with the same id is replaced by a fresh one. A
        dead-lettered id stays blocked until retention removes the row;
        replays use their own ids.

        Args:
            category: Target queue
            job_id: Deterministic id; duplicates collapse into one job
            payload: JSON-serializable payload
            delay: Hold the job back for this long
            max_attempts: Override the category's retry policy

        Returns:
            True if a new job was created, False if it was a duplicate
        """
        now = self.now()
        available_at = now + delay if delay else now
        attempts = max_attempts or self.policy_for(category).max_attempts

        async with self._session_factory() as session:
            existing = await session.get(QueueJob, job_id)
            if existing is not None and existing.status in BLOCKING_STATUSES:
                logger.debug(f"Job {job_id} already present ({existing.status}), skipping enqueue")
                return False

            if existing is not None:
                existing.category = category.value
                existing.payload = payload
                existing.status = JobStatus.PENDING.value
                existing.attempt = 0
                existing.max_attempts = attempts
                existing.available_at = available_at
                existing.locked_until = None
                existing.last_error = None
                existing.error_kind = None
                existing.created_at = now
                existing.finished_at = None
            else:
                session.add(QueueJob(
                    id=job_id,
                    category=category.value,
                    payload=payload,
                    status=JobStatus.PENDING.value,
                    attempt=0,
                    max_attempts=attempts,
                    available_at=available_at,
                    created_at=now,
                    updated_at=now,
                ))

            try:
                await session.commit()
            except IntegrityError:
                # Another producer inserted the same id first
                await session.rollback()
                logger.debug(f"Job {job_id} enqueued concurrently, skipping")
                return False

        logger.debug(f"Enqueued {category.value} job {job_id}")
        return True

    def _claimable(self, category: JobCategory, now: datetime):
        return and_(
            QueueJob.category == category.value,
            or_(
                and_(QueueJob.status.in_(CLAIMABLE_STATUSES), QueueJob.available_at <= now),
                and_(QueueJob.status == JobStatus.ACTIVE.value, QueueJob.locked_until < now),
            ),
        )

    async def claim(self, category: JobCategory) -> Optional[Job]:
        """Claim the next due job of a category, or None if there is none."""
        now = self.now()

        async with self._session_factory() as session:
            result = await session.execute(
                select(QueueJob.id)
                .where(self._claimable(category, now))
                .order_by(QueueJob.available_at, QueueJob.created_at)
                .limit(CLAIM_BATCH_SIZE)
            )
            candidate_ids = list(result.scalars())

            for job_id in candidate_ids:
                claimed = await session.execute(
                    update(QueueJob)
                    .where(QueueJob.id == job_id, self._claimable(category, now))
                    .values(
                        status=JobStatus.ACTIVE.value,
                        attempt=QueueJob.attempt + 1,
                        locked_until=now + self.visibility_timeout,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if claimed.rowcount != 1:
                    continue

                await session.commit()
                row = (await session.execute(select(QueueJob).where(QueueJob.id == job_id))).scalar_one()
                return Job(
                    id=row.id,
                    category=JobCategory(row.category),
                    payload=dict(row.payload or {}),
                    attempt=row.attempt,
                    max_attempts=row.max_attempts,
                    created_at=row.created_at,
                )

            await session.rollback()
        return None

    async def _update_owned(self, job: Job, **values) -> bool:
        """Update the job row only while this claim still owns it."""
        async with self._session_factory() as session:
            result = await session.execute(
                update(QueueJob)
                .where(
                    QueueJob.id == job.id,
                    QueueJob.status == JobStatus.ACTIVE.value,
                    QueueJob.attempt == job.attempt,
                )
                .values(updated_at=self.now(), **values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    async def heartbeat(self, job: Job) -> bool:
        """Extend the lease on a job being processed."""
        return await self._update_owned(job, locked_until=self.now() + self.visibility_timeout)

    async def complete(self, job: Job) -> bool:
        """Mark a claimed job as completed."""
        owned = await self._update_owned(
            job,
            status=JobStatus.COMPLETED.value,
            locked_until=None,
            finished_at=self.now(),
        )
        if not owned:
            logger.warning(f"Job {job.id} finished after its lease was taken over, result discarded")
        return owned

    async def fail(self, job: Job, error: BaseException) -> JobStatus:
        """
        Record a failed attempt and decide what happens next.

        Validation and permanent errors, and transient errors on the last
        attempt, move the job to the dead-letter queue. Other transient
        errors schedule a retry after the category's backoff. Dead-letter
        jobs are retried but never dead-lettered themselves.

        Returns:
            RETRY_WAIT or DEAD_LETTERED
        """
        kind = classify(error)
        message = describe_error(error)

        if job.category is JobCategory.DEAD_LETTER:
            if job.is_last_attempt:
                logger.bind(job_id=job.id, payload=job.payload).critical(
                    f"Dead-letter job {job.id} failed on final attempt, record may be lost: {message}"
                )
                await self._update_owned(
                    job,
                    status=JobStatus.DEAD_LETTERED.value,
                    locked_until=None,
                    last_error=message,
                    error_kind=kind.value,
                    finished_at=self.now(),
                )
                return JobStatus.DEAD_LETTERED
            return await self._schedule_retry(job, kind, message)

        if kind in (ErrorKind.VALIDATION, ErrorKind.PERMANENT) or job.is_last_attempt:
            record = DeadLetterJob(
                original_category=job.category.value,
                original_job_id=job.id,
                original_payload=job.payload,
                error=message,
                error_kind=kind.value,
                failed_at=self.now(),
                attempts_made=job.attempt,
            )
            await self.move_to_dead_letter(record, job=job)
            return JobStatus.DEAD_LETTERED

        return await self._schedule_retry(job, kind, message)

    async def _schedule_retry(self, job: Job, kind: ErrorKind, message: str) -> JobStatus:
        delay_ms = self.policy_for(job.category).delay_ms(job.attempt)
        await self._update_owned(
            job,
            status=JobStatus.RETRY_WAIT.value,
            locked_until=None,
            available_at=self.now() + timedelta(milliseconds=delay_ms),
            last_error=message,
            error_kind=kind.value,
        )
        logger.warning(
            f"{job.category.value} job {job.id} failed ({kind.value}, attempt {job.attempt}/{job.max_attempts}), "
            f"retrying in {delay_ms}ms: {message}"
        )
        return JobStatus.RETRY_WAIT

    async def move_to_dead_letter(self, record: DeadLetterJob, job: Optional[Job] = None):
        """
        Retire the original job and queue the record for the dead-letter handler.

        Both writes happen in one transaction so a job is never retired
        without its record being queued.
        """
        now = self.now()
        dlq_id = dead_letter_job_id(record.original_job_id, record.failed_at)

        async with self._session_factory() as session:
            conditions = [QueueJob.id == record.original_job_id]
            if job is not None:
                conditions += [QueueJob.status == JobStatus.ACTIVE.value, QueueJob.attempt == job.attempt]
            retired = await session.execute(
                update(QueueJob)
                .where(*conditions)
                .values(
                    status=JobStatus.DEAD_LETTERED.value,
                    locked_until=None,
                    last_error=record.error,
                    error_kind=record.error_kind,
                    finished_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if job is not None and retired.rowcount != 1:
                await session.rollback()
                logger.warning(f"Job {job.id} failed after its lease was taken over, not dead-lettering")
                return

            if await session.get(QueueJob, dlq_id) is None:
                session.add(QueueJob(
                    id=dlq_id,
                    category=JobCategory.DEAD_LETTER.value,
                    payload=dump_payload(record),
                    status=JobStatus.PENDING.value,
                    attempt=0,
                    max_attempts=self.policy_for(JobCategory.DEAD_LETTER).max_attempts,
                    available_at=now,
                    created_at=now,
                    updated_at=now,
                ))
            await session.commit()

        logger.error(
            f"{record.original_category} job {record.original_job_id} moved to dead letter "
            f"({record.error_kind}, {record.attempts_made} attempts): {record.error}"
        )

    async def save_dead_letter(self, record: DeadLetterJob) -> str:
        """
        Persist a dead-letter record.

        The record id is derived from the original job id and failure time,
        so saving the same record twice keeps a single row.

        Returns:
            The record id
        """
        record_id = str(uuid.uuid5(uuid.NAMESPACE_URL, f"{record.original_job_id}@{record.failed_at.isoformat()}"))

        async with self._session_factory() as session:
            if await session.get(DeadLetterRecord, record_id) is not None:
                return record_id
            session.add(DeadLetterRecord(
                id=record_id,
                original_category=record.original_category,
                original_job_id=record.original_job_id,
                original_payload=record.original_payload,
                error=record.error,
                error_kind=record.error_kind,
                attempts_made=record.attempts_made,
                failed_at=record.failed_at,
            ))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
        return record_id

    async def list_dead_letters(self, category: Optional[JobCategory] = None, limit: int = 50) -> List[DeadLetterRecord]:
        """Most recent dead-letter records, newest first."""
        async with self._session_factory() as session:
            stmt = select(DeadLetterRecord).order_by(DeadLetterRecord.failed_at.desc()).limit(limit)
            if category is not None:
                stmt = stmt.where(DeadLetterRecord.original_category == category.value)
            result = await session.execute(stmt)
            return list(result.scalars())

    async def replay_dead_letter(self, record_id: str) -> str:
        """
        Re-enqueue the payload of a dead-letter record under a replay id.

        Replay is always an operator action; nothing calls this automatically.

        Returns:
            The replay job id

        Raises:
            EntityNotFoundError: If the record does not exist
        """
        async with self._session_factory() as session:
            record = await session.get(DeadLetterRecord, record_id)
        if record is None:
            raise EntityNotFoundError("Dead-letter record", record_id)

        job_id = replay_job_id(record.original_job_id, record.id)
        created = await self.enqueue(JobCategory(record.original_category), job_id, dict(record.original_payload or {}))
        if created:
            logger.info(f"Replayed dead-letter record {record_id} as job {job_id}")
        else:
            logger.info(f"Replay job {job_id} is already queued")
        return job_id

    async def get_job(self, job_id: str) -> Optional[QueueJob]:
        async with self._session_factory() as session:
            return await session.get(QueueJob, job_id)

    async def counts(self, category: JobCategory) -> Dict[str, int]:
        """Job counts by status for one category."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(QueueJob.status, func.count())
                .where(QueueJob.category == category.value)
                .group_by(QueueJob.status)
            )
            return {status: count for status, count in result.all()}

    async def ping(self) -> bool:
        return await ping_database(self._session_factory)

    async def process_next(self, category: JobCategory, handler: Handler) -> Optional[JobStatus]:
        """
        Claim one job and run the handler on it.

        Returns:
            The job's resulting status, or None if nothing was claimable
        """
        job = await self.claim(category)
        if job is None:
            return None

        token = bind_correlation_id(job.id)
        try:
            if job.attempt > job.max_attempts:
                # Redelivered after a worker stalled on its final attempt
                return await self.fail(job, TransientError(f"Job stalled after {job.max_attempts} attempts"))

            heartbeat = asyncio.create_task(self._heartbeat_loop(job), name=f"heartbeat:{job.id}")
            try:
                await handler(job)
            except asyncio.CancelledError:
                # Lease expires and the job is redelivered
                raise
            except Exception as e:
                return await self.fail(job, e)
            finally:
                heartbeat.cancel()
                try:
                    await heartbeat
                except asyncio.CancelledError:
                    pass

            await self.complete(job)
            return JobStatus.COMPLETED
        finally:
            correlation_id_var.reset(token)

    async def _heartbeat_loop(self, job: Job):
        interval = max(self.workers.visibility_timeout_seconds / 3, 0.5)
        while True:
            await asyncio.sleep(interval)
            try:
                if not await self.heartbeat(job):
                    logger.warning(f"Lost lease on job {job.id}")
                    return
            except Exception as e:
                logger.warning(f"Heartbeat for job {job.id} failed: {e}")

    def consume(self, category: JobCategory, concurrency: int, handler: Handler) -> WorkerHandle:
        """Start a pool of worker slots for a category."""
        handle = WorkerHandle(
            self,
            category,
            concurrency,
            handler,
            poll_interval=self.workers.poll_interval_seconds,
        )
        handle.start()
        return handle

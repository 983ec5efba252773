"""
Data retention service for cleaning up finished jobs and audit rows.
"""
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from loguru import logger
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from reminder_engine.broker.jobs import JobStatus
from reminder_engine.config import HistoryConfig
from reminder_engine.database import checkpoint_wal
from reminder_engine.models import QueueJob, DeadLetterRecord, SchedulerRun


class RetentionService:
    """
    Manages data retention and cleanup of old records.

    Only finished queue jobs are removed; pending, active and retrying jobs
    are never touched.
    """

    def __init__(self, history: HistoryConfig, clock: Optional[Callable[[], datetime]] = None):
        self.history = history
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def cleanup_old_data(self, db: AsyncSession, bind: Optional[AsyncEngine] = None) -> Dict[str, int]:
        """
        Clean up old data based on the retention policy.

        Returns:
            Deleted row counts per table (empty if the cleanup failed)
        """
        now = self._clock()
        logger.info("Starting data retention cleanup")

        deleted: Dict[str, int] = {}
        try:
            deleted["completed_jobs"] = await self._cleanup_jobs(
                db, JobStatus.COMPLETED, now - timedelta(hours=self.history.completed_job_retention_hours)
            )
            deleted["dead_lettered_jobs"] = await self._cleanup_jobs(
                db, JobStatus.DEAD_LETTERED, now - timedelta(hours=self.history.failed_job_retention_hours)
            )
            deleted["scheduler_runs"] = await self._cleanup_datetime_table(
                db, SchedulerRun, "started_at", now - timedelta(days=self.history.scheduler_run_retention_days)
            )
            deleted["dead_letter_records"] = await self._cleanup_datetime_table(
                db, DeadLetterRecord, "failed_at", now - timedelta(days=self.history.dead_letter_retention_days)
            )

            await db.commit()
            logger.info("Data retention cleanup completed")

            # Run WAL checkpoint after cleanup to consolidate the database
            await checkpoint_wal(bind)

        except Exception as e:
            logger.error(f"Error during data retention cleanup: {e}")
            await db.rollback()
            return {}

        return deleted

    async def _cleanup_jobs(self, db: AsyncSession, status: JobStatus, cutoff: datetime) -> int:
        """Delete finished queue jobs of one status."""
        try:
            result = await db.execute(
                delete(QueueJob).where(QueueJob.status == status.value, QueueJob.finished_at < cutoff)
            )
            deleted_count = result.rowcount

            if deleted_count > 0:
                logger.info(f"Deleted {deleted_count} {status.value} jobs from {QueueJob.__tablename__}")
            return deleted_count

        except Exception as e:
            logger.error(f"Error cleaning up {status.value} jobs: {e}")
            raise

    async def _cleanup_datetime_table(self, db: AsyncSession, model, column_name: str, cutoff: datetime) -> int:
        """Clean up old records using a DateTime column."""
        try:
            column = getattr(model, column_name)
            result = await db.execute(delete(model).where(column < cutoff))
            deleted_count = result.rowcount

            if deleted_count > 0:
                logger.info(f"Deleted {deleted_count} old records from {model.__tablename__}")
            return deleted_count

        except Exception as e:
            logger.error(f"Error cleaning up {model.__tablename__}: {e}")
            raise

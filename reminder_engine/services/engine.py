"""
Engine assembly: wires the store, broker, workers and scheduler together.
"""
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reminder_engine.broker import JobCategory, QueueBroker, WorkerHandle
from reminder_engine.broker.worker import Handler
from reminder_engine.channels import AlertSink, ChannelSinks, create_channel_sinks
from reminder_engine.config import Settings
from reminder_engine.services.dead_letter import DeadLetterHandler
from reminder_engine.services.dispatch import NotificationDispatcher
from reminder_engine.services.domain_store import DomainStore
from reminder_engine.services.scheduler import ReminderScheduler
from reminder_engine.services.workers import (
    MedicationReminderWorker,
    AppointmentReminderWorker,
    ShiftReminderWorker,
    RefillAlertWorker,
)


class ReminderEngine:
    """
    Owns every long-running part of the reminder pipeline.

    start() launches one worker pool per job category and the scheduler;
    stop() shuts them down in reverse order and is safe to call twice.
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        sinks: Optional[ChannelSinks] = None,
        alert: Optional[AlertSink] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings
        self.store = DomainStore(session_factory)
        self.broker = QueueBroker(session_factory, retry=settings.retry, workers=settings.workers, clock=clock)
        self.sinks = sinks or create_channel_sinks(settings)
        self.alert = alert or AlertSink(settings.alert)

        self.handlers: Dict[JobCategory, Handler] = {
            JobCategory.MEDICATION: MedicationReminderWorker(self.store, self.broker, settings.reminders),
            JobCategory.APPOINTMENT: AppointmentReminderWorker(self.store, self.broker, settings.reminders),
            JobCategory.SHIFT: ShiftReminderWorker(self.store, self.broker, settings.reminders),
            JobCategory.REFILL: RefillAlertWorker(self.store, self.broker, settings.reminders),
            JobCategory.NOTIFICATION: NotificationDispatcher(self.store, self.sinks),
            JobCategory.DEAD_LETTER: DeadLetterHandler(self.broker, self.alert),
        }
        self.scheduler = ReminderScheduler(self.store, self.broker, settings.reminders, clock=clock)

        self._handles: List[WorkerHandle] = []
        self._started = False

    @property
    def is_running(self) -> bool:
        return self._started

    async def start(self):
        if self._started:
            return
        self._started = True

        for category, handler in self.handlers.items():
            concurrency = self.settings.workers.concurrency_for(category.value)
            self._handles.append(self.broker.consume(category, concurrency, handler))
            logger.info(f"Started {concurrency} {category.value} worker(s)")

        await self.scheduler.start()
        logger.info("Reminder engine started")

    async def stop(self):
        """Stop the scheduler, drain worker pools, then close outbound sessions."""
        if not self._started:
            return
        self._started = False

        await self.scheduler.stop()

        timeout = self.settings.workers.shutdown_timeout_seconds
        for handle in self._handles:
            try:
                await handle.close(timeout=timeout)
            except Exception as e:
                logger.error(f"Error closing {handle.category.value} workers: {e}")
        self._handles = []

        await self.sinks.close()
        await self.alert.close()
        logger.info("Reminder engine stopped")

    async def is_ready(self) -> Dict[str, bool]:
        """Connectivity of the queue store and the domain store."""
        return {
            "queue": await self.broker.ping(),
            "database": await self.store.ping(),
        }

    async def worker_status(self) -> List[Dict[str, Any]]:
        status = []
        for handle in self._handles:
            status.append({
                "category": handle.category.value,
                "concurrency": handle.concurrency,
                "running": handle.is_running(),
                "processed": handle.processed,
                "jobs": await self.broker.counts(handle.category),
            })
        return status

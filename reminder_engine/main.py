"""
Main FastAPI application for the reminder engine.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import Callable, Awaitable, Dict, Optional

from fastapi import FastAPI
from loguru import logger

from reminder_engine import __version__
from reminder_engine.config import settings
from reminder_engine.middleware.correlation import CorrelationIdMiddleware
from reminder_engine.constants import (
    TASK_MONITOR_CHECK_INTERVAL_SECONDS,
    RETENTION_CLEANUP_INTERVAL_SECONDS,
)
from reminder_engine.database import init_db, close_db, AsyncSessionLocal, engine as db_engine
from reminder_engine.utils.logger import setup_logger
from reminder_engine.services import ReminderEngine, RetentionService
from reminder_engine.api import status


class BackgroundTaskMonitor:
    """
    Monitors and restarts background tasks if they die unexpectedly.
    """

    def __init__(self, app: FastAPI):
        self.app = app
        self._tasks: Dict[str, asyncio.Task] = {}
        self._task_factories: Dict[str, Callable[[], Awaitable[None]]] = {}
        self._monitor_task: Optional[asyncio.Task] = None
        self._running = False

    def register_task(self, name: str, factory: Callable[[], Awaitable[None]]) -> asyncio.Task:
        """
        Register and start a background task.

        Args:
            name: Unique name for the task
            factory: Coroutine factory that creates the task

        Returns:
            The created asyncio.Task
        """
        self._task_factories[name] = factory
        task = asyncio.create_task(factory(), name=name)
        self._tasks[name] = task
        logger.info(f"Background task '{name}' started")
        return task

    async def start_monitoring(self, check_interval: float = TASK_MONITOR_CHECK_INTERVAL_SECONDS):
        """Start the task monitor."""
        self._running = True
        self._monitor_task = asyncio.create_task(
            self._monitor_loop(check_interval),
            name="task_monitor"
        )

    async def stop(self):
        """Stop all tasks and the monitor."""
        self._running = False

        if self._monitor_task:
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass

        for name, task in self._tasks.items():
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
            logger.debug(f"Background task '{name}' stopped")

    async def _monitor_loop(self, check_interval: float):
        """Monitor tasks and restart if needed."""
        while self._running:
            try:
                await asyncio.sleep(check_interval)
                self.restart_dead_tasks()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in task monitor: {e}")

    def restart_dead_tasks(self):
        for name, task in list(self._tasks.items()):
            if not task.done():
                continue
            if task.cancelled():
                logger.debug(f"Background task '{name}' was cancelled")
                continue  # Don't restart cancelled tasks

            exc = task.exception()
            if exc:
                logger.error(f"Background task '{name}' crashed: {exc}")

            logger.warning(f"Restarting background task '{name}'")
            self._tasks[name] = asyncio.create_task(self._task_factories[name](), name=name)


async def retention_cleanup_loop(app: FastAPI):
    """Background task that runs retention cleanup hourly."""
    retention_service = RetentionService(settings.history)
    while True:
        try:
            await asyncio.sleep(RETENTION_CLEANUP_INTERVAL_SECONDS)
            async with AsyncSessionLocal() as db:
                await retention_service.cleanup_old_data(db)
        except asyncio.CancelledError:
            logger.debug("Retention cleanup task cancelled")
            raise  # Re-raise to properly signal cancellation
        except Exception as e:
            logger.error(f"Error in retention cleanup task: {e}")
            # Continue loop to retry on next interval


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager."""
    # Startup
    setup_logger()
    logger.info(f"Starting {settings.app_name} {__version__}...")

    await init_db()
    logger.info("Database initialized")

    engine = ReminderEngine(settings, AsyncSessionLocal)
    await engine.start()
    app.state.engine = engine

    task_monitor = BackgroundTaskMonitor(app)
    app.state.task_monitor = task_monitor
    task_monitor.register_task(
        "retention_cleanup",
        lambda: retention_cleanup_loop(app)
    )
    logger.info("Retention cleanup task started (runs hourly)")

    await task_monitor.start_monitoring(check_interval=TASK_MONITOR_CHECK_INTERVAL_SECONDS)
    logger.info("Background task monitor started")

    logger.info(f"{settings.app_name} started successfully")

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.app_name}...")

    await task_monitor.stop()
    logger.debug("Background task monitor stopped")

    await engine.stop()

    await close_db(db_engine)
    logger.info(f"{settings.app_name} shut down complete")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Scheduled care reminders with reliable multi-channel delivery",
    version=__version__,
    lifespan=lifespan
)

# Correlation ID middleware (first, to capture all requests)
app.add_middleware(CorrelationIdMiddleware)

app.include_router(status.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)

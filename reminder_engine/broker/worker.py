"""
Worker pools pulling jobs from one category queue.
"""
import asyncio
from typing import TYPE_CHECKING, Any, Awaitable, Callable, List, Optional

from loguru import logger

from reminder_engine.broker.jobs import Job, JobCategory

if TYPE_CHECKING:
    from reminder_engine.broker.broker import QueueBroker

Handler = Callable[[Job], Awaitable[Any]]


class WorkerHandle:
    """
    A pool of slots that each claim and process one job at a time.

    Slots poll the queue every poll_interval seconds while it is empty.
    close() stops claiming new jobs, waits for in-flight ones up to a
    timeout, then cancels what is left; cancelled jobs are redelivered
    once their lease expires.
    """

    def __init__(
        self,
        broker: "QueueBroker",
        category: JobCategory,
        concurrency: int,
        handler: Handler,
        poll_interval: float = 1.0,
    ):
        self.broker = broker
        self.category = category
        self.concurrency = max(concurrency, 1)
        self.handler = handler
        self.poll_interval = poll_interval
        self._slots: List[asyncio.Task] = []
        self._running = False
        self._stopping: Optional[asyncio.Event] = None
        self.processed = 0

    def start(self):
        if self._running:
            return
        self._running = True
        self._stopping = asyncio.Event()
        self._slots = [
            asyncio.create_task(self._slot_loop(index), name=f"{self.category.value}-worker-{index}")
            for index in range(self.concurrency)
        ]
        logger.info(f"Started {self.concurrency} {self.category.value} worker slot(s)")

    def is_running(self) -> bool:
        """True while started and at least one slot is alive."""
        return self._running and any(not slot.done() for slot in self._slots)

    async def _slot_loop(self, index: int):
        while not self._stopping.is_set():
            try:
                outcome = await self.broker.process_next(self.category, self.handler)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Queue store unreachable; back off and try again
                logger.error(f"{self.category.value} worker {index} failed to pull a job: {e}")
                outcome = None

            if outcome is not None:
                self.processed += 1
                continue

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

    async def close(self, timeout: float = 15.0):
        """Stop the pool. Safe to call more than once."""
        if not self._running:
            return
        self._running = False
        self._stopping.set()

        done, pending = await asyncio.wait(self._slots, timeout=timeout) if self._slots else (set(), set())
        if pending:
            logger.warning(
                f"{len(pending)} {self.category.value} job(s) still running after {timeout}s, cancelling"
            )
            for slot in pending:
                slot.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        for slot in done:
            if not slot.cancelled() and slot.exception():
                logger.error(f"{self.category.value} worker slot crashed: {slot.exception()}")

        self._slots = []
        logger.info(f"Stopped {self.category.value} workers ({self.processed} jobs processed)")

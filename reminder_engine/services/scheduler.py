"""
Reminder scheduler.

Every tick scans due medications, appointments and shifts (and, once a day,
low medication supply) and enqueues one category job per due reminder. Job
ids are deterministic, so repeated ticks and duplicate scheduler instances
collapse into a single job.
"""
import asyncio
import time
from datetime import datetime, date, timedelta, timezone
from typing import Awaitable, Callable, Dict, Iterator, List, Optional, Tuple
from zoneinfo import ZoneInfo

from loguru import logger

from reminder_engine.broker import (
    JobCategory,
    QueueBroker,
    medication_job_id,
    appointment_job_id,
    shift_job_id,
    refill_job_id,
)
from reminder_engine.config import ReminderConfig
from reminder_engine.models import Medication
from reminder_engine.schemas.jobs import (
    MedicationReminderJob,
    AppointmentReminderJob,
    ShiftReminderJob,
    RefillAlertJob,
    dump_payload,
)
from reminder_engine.services.domain_store import DomainStore
from reminder_engine.utils.errors import describe_error
from reminder_engine.utils.formatting import resolve_zone, parse_clock

Scan = Callable[[datetime], Awaitable[int]]


class ReminderScheduler:
    """
    Periodic ticker that turns due reminders into queue jobs.

    Args:
        store: Domain store to scan
        broker: Queue to enqueue category jobs on
        reminders: Offsets, tick interval and refill check time
        clock: Returns "now" as an aware UTC datetime (defaults to the broker's clock)
    """

    def __init__(
        self,
        store: DomainStore,
        broker: QueueBroker,
        reminders: Optional[ReminderConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.broker = broker
        self.reminders = reminders or ReminderConfig()
        self._clock = clock or broker.now
        self._task: Optional[asyncio.Task] = None
        self._stopping: Optional[asyncio.Event] = None

    @property
    def tick(self) -> timedelta:
        return timedelta(seconds=self.reminders.tick_seconds)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self):
        """Run a tick now and then one per tick interval."""
        if self.is_running:
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop(), name="reminder-scheduler")
        logger.info(f"Reminder scheduler started (tick: {self.reminders.tick_seconds}s)")

    async def stop(self):
        """Stop ticking. Safe to call more than once."""
        if self._task is None:
            return
        task, self._task = self._task, None
        self._stopping.set()
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Reminder scheduler stopped")

    async def _run_loop(self):
        while not self._stopping.is_set():
            try:
                await self.run_tick()
            except Exception as e:
                logger.error(f"Scheduler tick failed: {e}")

            # Wake at the next bucket boundary so no bucket is skipped
            now = self._clock()
            delay = (self.bucket(now) + self.tick - now).total_seconds()
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=max(delay, 0.0))
            except asyncio.TimeoutError:
                pass

    # ------------------------------------------------------------------
    # Buckets
    # ------------------------------------------------------------------

    def bucket(self, moment: datetime) -> datetime:
        """Start of the epoch-aligned tick bucket containing moment."""
        seconds = self.reminders.tick_seconds
        stamp = int(moment.timestamp())
        return datetime.fromtimestamp(stamp - stamp % seconds, tz=timezone.utc)

    def is_due(self, now: datetime, reminder_time: datetime) -> bool:
        return self.bucket(now) == self.bucket(reminder_time)

    def refill_due(self, now: datetime) -> bool:
        """True during the tick bucket holding today's refill check time."""
        zone = resolve_zone(default=self.reminders.default_timezone)
        local_now = now.astimezone(zone)
        check_at = datetime.combine(local_now.date(), parse_clock(self.reminders.refill_check_time), tzinfo=zone)
        return self.is_due(now, check_at)

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def run_tick(self, now: Optional[datetime] = None) -> Dict[str, Optional[int]]:
        """
        Run every scan once.

        A failing scan is logged and recorded; the others still run.

        Returns:
            Jobs enqueued per scan (None for a failed scan)
        """
        now = now or self._clock()
        scans: List[Tuple[str, Scan]] = [
            ("medication_scan", self.scan_medications),
            ("appointment_scan", self.scan_appointments),
            ("shift_scan", self.scan_shifts),
        ]
        if self.refill_due(now):
            scans.append(("refill_check", self.scan_refills))

        results = {}
        for name, scan in scans:
            results[name] = await self._run_scan(name, scan, now)
        return results

    async def _run_scan(self, name: str, scan: Scan, now: datetime) -> Optional[int]:
        run_id = None
        try:
            run_id = await self.store.start_scheduler_run(name, now)
        except Exception as e:
            logger.warning(f"Could not record start of {name}: {e}")

        started = time.monotonic()
        enqueued: Optional[int] = None
        error = None
        try:
            enqueued = await scan(now)
            if enqueued:
                logger.info(f"{name}: enqueued {enqueued} job(s)")
        except Exception as e:
            error = describe_error(e)
            logger.error(f"{name} failed: {error}")

        if run_id is not None:
            try:
                await self.store.finish_scheduler_run(
                    run_id,
                    status="FAILED" if error else "COMPLETED",
                    completed_at=self._clock(),
                    duration_ms=int((time.monotonic() - started) * 1000),
                    items_processed=enqueued or 0,
                    error=error,
                )
            except Exception as e:
                logger.warning(f"Could not record end of {name}: {e}")
        return enqueued

    # ------------------------------------------------------------------
    # Scans
    # ------------------------------------------------------------------

    def medication_occurrences(self, medication: Medication, zone: ZoneInfo, now: datetime) -> Iterator[datetime]:
        """Scheduled doses for local today and tomorrow, as UTC datetimes."""
        today = now.astimezone(zone).date()
        for day in (today, today + timedelta(days=1)):
            for clock in medication.scheduled_times or []:
                try:
                    at = parse_clock(clock)
                except (ValueError, TypeError, AttributeError):
                    logger.warning(f"Medication {medication.id} has an invalid scheduled time '{clock}', ignoring it")
                    continue
                yield datetime.combine(day, at, tzinfo=zone).astimezone(timezone.utc)

    async def scan_medications(self, now: datetime) -> int:
        enqueued = 0
        for medication, care_recipient in await self.store.active_medications():
            zone = resolve_zone(care_recipient.timezone, default=self.reminders.default_timezone)
            for scheduled_time in self.medication_occurrences(medication, zone, now):
                for offset in self.reminders.medication_offsets:
                    if not self.is_due(now, scheduled_time - timedelta(minutes=offset)):
                        continue
                    if await self.store.dose_logged(medication.id, scheduled_time):
                        logger.debug(f"Dose of {medication.id} at {scheduled_time.isoformat()} already logged")
                        continue

                    payload = MedicationReminderJob(
                        medication_id=medication.id,
                        care_recipient_id=care_recipient.id,
                        scheduled_time=scheduled_time,
                        medication_name=medication.name,
                        dosage=medication.dosage,
                        minutes_before=offset,
                    )
                    if await self.broker.enqueue(
                        JobCategory.MEDICATION,
                        medication_job_id(medication.id, scheduled_time, zone, offset),
                        dump_payload(payload),
                    ):
                        enqueued += 1
        return enqueued

    def _window(self, now: datetime, offsets: List[int]) -> Tuple[datetime, datetime]:
        return self.bucket(now), now + timedelta(minutes=max(offsets, default=0)) + self.tick

    async def scan_appointments(self, now: datetime) -> int:
        offsets = self.reminders.appointment_offsets
        start, end = self._window(now, offsets)
        enqueued = 0
        for appointment, care_recipient in await self.store.upcoming_appointments(start, end):
            for offset in offsets:
                if not self.is_due(now, appointment.start_time - timedelta(minutes=offset)):
                    continue
                payload = AppointmentReminderJob(
                    appointment_id=appointment.id,
                    care_recipient_id=care_recipient.id,
                    appointment_time=appointment.start_time,
                    title=appointment.title,
                    location=appointment.location,
                    minutes_before=offset,
                )
                if await self.broker.enqueue(
                    JobCategory.APPOINTMENT,
                    appointment_job_id(appointment.id, offset),
                    dump_payload(payload),
                ):
                    enqueued += 1
        return enqueued

    async def scan_shifts(self, now: datetime) -> int:
        offsets = self.reminders.shift_offsets
        start, end = self._window(now, offsets)
        enqueued = 0
        for shift in await self.store.upcoming_shifts(start, end):
            for offset in offsets:
                if not self.is_due(now, shift.start_time - timedelta(minutes=offset)):
                    continue
                payload = ShiftReminderJob(
                    shift_id=shift.id,
                    care_recipient_id=shift.care_recipient_id,
                    caregiver_id=shift.caregiver_id,
                    start_time=shift.start_time,
                    minutes_before=offset,
                )
                if await self.broker.enqueue(JobCategory.SHIFT, shift_job_id(shift.id, offset), dump_payload(payload)):
                    enqueued += 1
        return enqueued

    async def scan_refills(self, now: datetime) -> int:
        zone = resolve_zone(default=self.reminders.default_timezone)
        check_date: date = now.astimezone(zone).date()
        enqueued = 0
        for medication, care_recipient in await self.store.refill_candidates():
            payload = RefillAlertJob(
                medication_id=medication.id,
                medication_name=medication.name,
                current_supply=medication.current_supply,
                refill_at=medication.refill_at,
                care_recipient_id=care_recipient.id,
                care_recipient_name=care_recipient.display_name,
                check_date=check_date,
            )
            if await self.broker.enqueue(
                JobCategory.REFILL,
                refill_job_id(medication.id, check_date),
                dump_payload(payload),
            ):
                enqueued += 1
        logger.info(f"Refill check for {check_date.isoformat()}: {enqueued} medication(s) low on supply")
        return enqueued

"""Tests for the medication, appointment, shift and refill workers."""

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import select

from reminder_engine.broker import Job, JobCategory
from reminder_engine.models import Notification
from reminder_engine.models.enums import AppointmentStatus, MemberRole, ShiftStatus
from reminder_engine.schemas.jobs import (
    AppointmentReminderJob,
    MedicationReminderJob,
    RefillAlertJob,
    ShiftReminderJob,
    dump_payload,
)
from reminder_engine.services.workers import (
    AppointmentReminderWorker,
    MedicationReminderWorker,
    RefillAlertWorker,
    ShiftReminderWorker,
    medication_idempotency_key,
)
from reminder_engine.utils.errors import ValidationError

UTC = timezone.utc
DOSE = datetime(2024, 6, 1, 14, 0, tzinfo=UTC)


def make_job(category, payload, job_id="job-1", attempt=1):
    return Job(
        id=job_id,
        category=category,
        payload=payload,
        attempt=attempt,
        max_attempts=3,
        created_at=datetime(2024, 6, 1, 13, 30, tzinfo=UTC),
    )


def medication_job(medication, circle, minutes_before=30, scheduled_time=DOSE):
    return make_job(JobCategory.MEDICATION, dump_payload(MedicationReminderJob(
        medication_id=medication.id,
        care_recipient_id=circle.care_recipient.id,
        scheduled_time=scheduled_time,
        medication_name=medication.name,
        dosage=medication.dosage,
        minutes_before=minutes_before,
    )))


async def notifications(session_factory):
    async with session_factory() as session:
        result = await session.execute(select(Notification).order_by(Notification.user_id))
        return list(result.scalars())


async def dispatch_jobs(broker):
    jobs = []
    while True:
        job = await broker.claim(JobCategory.NOTIFICATION)
        if job is None:
            return sorted(jobs, key=lambda j: j.id)
        jobs.append(job)


@pytest.mark.unit
class TestMedicationKey:
    def test_single_dose_key_is_per_day(self):
        assert medication_idempotency_key("m1", DOSE, ZoneInfo("UTC"), 30) == "med-m1-2024-06-01-30"

    def test_multi_dose_key_includes_dose_time(self):
        key = medication_idempotency_key("m1", DOSE, ZoneInfo("UTC"), 30, multi_dose=True)

        assert key == "med-m1-2024-06-01T1400-30"

    def test_date_is_care_recipient_local(self):
        # 02:00 UTC on June 2 is still June 1 in New York
        late = datetime(2024, 6, 2, 2, 0, tzinfo=UTC)

        assert medication_idempotency_key("m1", late, ZoneInfo("America/New_York"), 0) == "med-m1-2024-06-01-0"


@pytest.mark.integration
class TestMedicationReminderWorker:
    @pytest.fixture
    def worker(self, store, broker, reminders):
        return MedicationReminderWorker(store, broker, reminders)

    async def test_notifies_every_active_member(self, worker, seed, broker, session_factory):
        circle = await seed.care_circle(inactive_roles=(MemberRole.CAREGIVER,))
        medication = await seed.medication(circle.care_recipient)

        result = await worker.process(medication_job(medication, circle))

        assert result.success
        assert result.notified == 2
        key = f"med-{medication.id}-2024-06-01-30"
        rows = await notifications(session_factory)
        assert sorted(row.user_id for row in rows) == sorted(circle.user_ids)
        assert {row.idempotency_key for row in rows} == {key}
        assert rows[0].title == "Medication Reminder"
        assert rows[0].body == "Mom needs Lisinopril (10mg) in 30 minutes (2:00 PM)."
        assert rows[0].data["idempotencyKey"] == key

        jobs = await dispatch_jobs(broker)
        assert [job.id for job in jobs] == sorted(f"push-{key}-{user_id}" for user_id in circle.user_ids)
        assert jobs[0].payload["channel"] == "PUSH"
        assert jobs[0].payload["priority"] == "normal"
        assert jobs[0].payload["data"]["type"] == "MEDICATION_REMINDER"

    async def test_retry_does_not_duplicate(self, worker, seed, broker, session_factory):
        circle = await seed.care_circle()
        medication = await seed.medication(circle.care_recipient)
        job = medication_job(medication, circle)

        await worker.process(job)
        retried = await worker.process(make_job(JobCategory.MEDICATION, job.payload, attempt=2))

        assert retried.notified == 0
        assert retried.duplicates == 2
        assert len(await notifications(session_factory)) == 2
        assert len(await dispatch_jobs(broker)) == 2

    async def test_due_now_is_high_priority(self, worker, seed, broker, session_factory):
        circle = await seed.care_circle(roles=(MemberRole.ADMIN,))
        medication = await seed.medication(circle.care_recipient)

        await worker.process(medication_job(medication, circle, minutes_before=0))

        [row] = await notifications(session_factory)
        assert row.title == "Time for Mom's Medication"
        assert row.body == "Lisinopril (10mg) is due now."
        [job] = await dispatch_jobs(broker)
        assert job.payload["priority"] == "high"

    async def test_times_are_shown_in_recipient_zone(self, worker, seed, session_factory):
        circle = await seed.care_circle(roles=(MemberRole.ADMIN,))
        async with session_factory() as session:
            user = await session.get(type(circle.users[0]), circle.users[0].id)
            user.timezone = "America/Chicago"
            await session.commit()
        medication = await seed.medication(circle.care_recipient)

        await worker.process(medication_job(medication, circle, minutes_before=5))

        [row] = await notifications(session_factory)
        assert row.title == "Medication in 5 Minutes"
        assert row.body == "Mom needs Lisinopril (10mg) at 9:00 AM."

    async def test_multi_dose_medication_keys_each_dose(self, worker, seed, session_factory):
        circle = await seed.care_circle(roles=(MemberRole.ADMIN,))
        medication = await seed.medication(circle.care_recipient, scheduled_times=["08:00", "14:00"])

        await worker.process(medication_job(medication, circle, scheduled_time=DOSE.replace(hour=8)))
        await worker.process(medication_job(medication, circle, scheduled_time=DOSE))

        keys = sorted(row.idempotency_key for row in await notifications(session_factory))
        assert keys == [f"med-{medication.id}-2024-06-01T0800-30", f"med-{medication.id}-2024-06-01T1400-30"]

    async def test_inactive_medication_is_skipped(self, worker, seed, session_factory):
        circle = await seed.care_circle()
        medication = await seed.medication(circle.care_recipient, is_active=False)

        result = await worker.process(medication_job(medication, circle))

        assert result.skipped
        assert result.reason == "not_active"
        assert await notifications(session_factory) == []

    async def test_deleted_medication_is_skipped(self, worker, seed):
        circle = await seed.care_circle()
        medication = await seed.medication(circle.care_recipient)
        job = medication_job(medication, circle)
        job.payload["medication_id"] = "4b0c5a70-8c1f-4e55-9a3a-2f7d3c1e9b11"

        result = await worker.process(job)

        assert result.skipped
        assert result.reason == "entity_not_found"

    async def test_no_active_members_is_skipped(self, worker, seed):
        circle = await seed.care_circle(roles=(), inactive_roles=(MemberRole.ADMIN,))
        medication = await seed.medication(circle.care_recipient)

        result = await worker.process(medication_job(medication, circle))

        assert result.reason == "no_recipients"

    async def test_malformed_payload_raises_validation_error(self, worker):
        job = make_job(JobCategory.MEDICATION, {"medication_id": "not-a-uuid", "extra": True})

        with pytest.raises(ValidationError) as exc_info:
            await worker.process(job)

        assert "Invalid MedicationReminderJob payload" in exc_info.value.message


@pytest.mark.integration
class TestAppointmentReminderWorker:
    @pytest.fixture
    def worker(self, store, broker, reminders):
        return AppointmentReminderWorker(store, broker, reminders)

    def job(self, appointment, circle, minutes_before):
        return make_job(JobCategory.APPOINTMENT, dump_payload(AppointmentReminderJob(
            appointment_id=appointment.id,
            care_recipient_id=circle.care_recipient.id,
            appointment_time=appointment.start_time,
            title=appointment.title,
            location=appointment.location,
            minutes_before=minutes_before,
        )))

    async def test_day_before_reminder(self, worker, seed, session_factory):
        circle = await seed.care_circle(roles=(MemberRole.ADMIN,))
        appointment = await seed.appointment(circle.care_recipient, datetime(2024, 6, 2, 14, 0, tzinfo=UTC))

        await worker.process(self.job(appointment, circle, 1440))

        [row] = await notifications(session_factory)
        assert row.idempotency_key == f"apt-{appointment.id}-1440"
        assert row.title == "Appointment Tomorrow"
        assert row.body == (
            "Mom has Cardiology follow-up on Sunday, June 2 at 2:00 PM. Location: St. Mary's Clinic."
        )

    async def test_transport_person_gets_own_reminder(self, worker, seed, broker, session_factory):
        circle = await seed.care_circle()
        driver = circle.users[1]
        appointment = await seed.appointment(
            circle.care_recipient, datetime(2024, 6, 1, 14, 30, tzinfo=UTC), transport_user_id=driver.id
        )

        result = await worker.process(self.job(appointment, circle, 60))

        assert result.notified == 3
        rows = await notifications(session_factory)
        transport = [row for row in rows if row.idempotency_key.endswith("-transport")]
        assert len(transport) == 1
        assert transport[0].user_id == driver.id
        assert transport[0].title == "Transport Reminder"
        family = [row for row in rows if row.idempotency_key == f"apt-{appointment.id}-60"]
        assert family[0].body.endswith(f"Transport: {driver.full_name}.")
        assert all(job.payload["priority"] == "high" for job in await dispatch_jobs(broker))

    @pytest.mark.parametrize("status", [AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED])
    async def test_finished_appointment_is_skipped(self, worker, seed, status):
        circle = await seed.care_circle()
        appointment = await seed.appointment(
            circle.care_recipient, datetime(2024, 6, 1, 14, 0, tzinfo=UTC), status=status.value
        )

        result = await worker.process(self.job(appointment, circle, 30))

        assert result.reason == "not_active"


@pytest.mark.integration
class TestShiftReminderWorker:
    @pytest.fixture
    def worker(self, store, broker, reminders):
        return ShiftReminderWorker(store, broker, reminders)

    def job(self, shift, minutes_before):
        return make_job(JobCategory.SHIFT, dump_payload(ShiftReminderJob(
            shift_id=shift.id,
            care_recipient_id=shift.care_recipient_id,
            caregiver_id=shift.caregiver_id,
            start_time=shift.start_time,
            minutes_before=minutes_before,
        )))

    async def test_only_caregiver_is_notified(self, worker, seed, broker, session_factory):
        circle = await seed.care_circle()
        caregiver = circle.users[1]
        shift = await seed.shift(circle.care_recipient, caregiver, datetime(2024, 6, 1, 14, 30, tzinfo=UTC))

        await worker.process(self.job(shift, 60))

        [row] = await notifications(session_factory)
        assert row.user_id == caregiver.id
        assert row.idempotency_key == f"shift-{shift.id}-60"
        assert row.title == "Shift Starting in 1 Hour"
        assert row.body == "Your caregiving shift for Mom starts at 2:30 PM."
        [job] = await dispatch_jobs(broker)
        assert job.payload["priority"] == "high"

    async def test_started_shift_is_skipped(self, worker, seed):
        circle = await seed.care_circle()
        shift = await seed.shift(
            circle.care_recipient,
            circle.users[1],
            datetime(2024, 6, 1, 13, 45, tzinfo=UTC),
            status=ShiftStatus.IN_PROGRESS.value,
        )

        result = await worker.process(self.job(shift, 15))

        assert result.reason == "not_active"


@pytest.mark.integration
class TestRefillAlertWorker:
    @pytest.fixture
    def worker(self, store, broker, reminders):
        return RefillAlertWorker(store, broker, reminders)

    def job(self, medication, circle):
        return make_job(JobCategory.REFILL, dump_payload(RefillAlertJob(
            medication_id=medication.id,
            medication_name=medication.name,
            current_supply=medication.current_supply or 0,
            refill_at=medication.refill_at or 0,
            care_recipient_id=circle.care_recipient.id,
            care_recipient_name=circle.care_recipient.display_name,
            check_date=date(2024, 6, 1),
        )))

    async def test_urgent_alert_goes_to_admins_and_caregivers_by_push_and_email(
        self, worker, seed, broker, session_factory
    ):
        circle = await seed.care_circle(roles=(MemberRole.ADMIN, MemberRole.CAREGIVER, MemberRole.VIEWER))
        medication = await seed.medication(circle.care_recipient, current_supply=2, refill_at=7)

        result = await worker.process(self.job(medication, circle))

        assert result.notified == 2
        rows = await notifications(session_factory)
        viewer = circle.users[2]
        assert viewer.id not in {row.user_id for row in rows}
        assert rows[0].title == "Urgent: Lisinopril Running Out"
        assert rows[0].idempotency_key == f"refill-{medication.id}-2024-06-01"

        channels = sorted(job.payload["channel"] for job in await dispatch_jobs(broker))
        assert channels == ["EMAIL", "EMAIL", "PUSH", "PUSH"]

    async def test_low_supply_is_push_only(self, worker, seed, broker, session_factory):
        circle = await seed.care_circle(roles=(MemberRole.ADMIN,))
        medication = await seed.medication(circle.care_recipient, current_supply=9, refill_at=10)

        await worker.process(self.job(medication, circle))

        [row] = await notifications(session_factory)
        assert row.title == "Refill Needed: Lisinopril"
        [job] = await dispatch_jobs(broker)
        assert job.payload["channel"] == "PUSH"
        assert job.payload["priority"] == "normal"

    async def test_refilled_medication_is_skipped(self, worker, seed):
        circle = await seed.care_circle()
        medication = await seed.medication(circle.care_recipient, current_supply=30, refill_at=10)

        result = await worker.process(self.job(medication, circle))

        assert result.reason == "supply_adequate"

    async def test_untracked_supply_is_skipped(self, worker, seed):
        circle = await seed.care_circle()
        medication = await seed.medication(circle.care_recipient)

        result = await worker.process(self.job(medication, circle))

        assert result.reason == "no_supply_tracking"

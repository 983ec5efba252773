"""Tests for the SQL queue broker: dedup, leases, retries and dead letters."""

import asyncio
from datetime import timedelta

import pytest

from reminder_engine.broker import JobCategory, JobStatus, dead_letter_job_id
from reminder_engine.schemas.jobs import DeadLetterJob
from reminder_engine.utils.errors import EntityNotFoundError, PermanentError, TransientError, ValidationError

PAYLOAD = {"hello": "world"}


def failing(error):
    async def handler(job):
        raise error
    return handler


@pytest.mark.integration
class TestEnqueue:
    async def test_same_id_is_enqueued_once(self, broker):
        assert await broker.enqueue(JobCategory.MEDICATION, "medication-1-0", PAYLOAD) is True
        assert await broker.enqueue(JobCategory.MEDICATION, "medication-1-0", PAYLOAD) is False

        job = await broker.get_job("medication-1-0")
        assert job.status == JobStatus.PENDING.value
        assert job.max_attempts == 3
        assert await broker.counts(JobCategory.MEDICATION) == {"pending": 1}

    async def test_completed_job_id_can_be_reused(self, broker):
        await broker.enqueue(JobCategory.MEDICATION, "medication-1-0", PAYLOAD)
        job = await broker.claim(JobCategory.MEDICATION)
        await broker.complete(job)

        assert await broker.enqueue(JobCategory.MEDICATION, "medication-1-0", {"second": "run"}) is True

        row = await broker.get_job("medication-1-0")
        assert row.status == JobStatus.PENDING.value
        assert row.attempt == 0
        assert row.payload == {"second": "run"}

    async def test_dead_lettered_job_id_is_not_reenqueued(self, broker):
        await broker.enqueue(JobCategory.MEDICATION, "medication-x-30", PAYLOAD)
        outcome = await broker.process_next(JobCategory.MEDICATION, failing(ValueError("Invalid payload")))
        assert outcome is JobStatus.DEAD_LETTERED

        assert await broker.enqueue(JobCategory.MEDICATION, "medication-x-30", PAYLOAD) is False

        assert await broker.process_next(JobCategory.MEDICATION, failing(AssertionError("ran twice"))) is None
        assert (await broker.get_job("medication-x-30")).status == JobStatus.DEAD_LETTERED.value
        assert await broker.counts(JobCategory.DEAD_LETTER) == {"pending": 1}

    async def test_delayed_job_is_not_claimable_early(self, broker, clock):
        await broker.enqueue(JobCategory.REFILL, "refill-1", PAYLOAD, delay=timedelta(minutes=5))

        assert await broker.claim(JobCategory.REFILL) is None
        clock.advance(minutes=5)
        assert (await broker.claim(JobCategory.REFILL)).id == "refill-1"


@pytest.mark.integration
class TestClaim:
    async def test_claim_is_exclusive_while_leased(self, broker):
        await broker.enqueue(JobCategory.SHIFT, "shift-1-60", PAYLOAD)

        job = await broker.claim(JobCategory.SHIFT)

        assert job.id == "shift-1-60"
        assert job.attempt == 1
        assert job.payload == PAYLOAD
        assert await broker.claim(JobCategory.SHIFT) is None

    async def test_claim_only_sees_its_category(self, broker):
        await broker.enqueue(JobCategory.SHIFT, "shift-1-60", PAYLOAD)

        assert await broker.claim(JobCategory.APPOINTMENT) is None

    async def test_stalled_job_is_redelivered_after_lease(self, broker, clock):
        await broker.enqueue(JobCategory.SHIFT, "shift-1-60", PAYLOAD)
        first = await broker.claim(JobCategory.SHIFT)

        clock.advance(seconds=31)
        second = await broker.claim(JobCategory.SHIFT)

        assert second.id == first.id
        assert second.attempt == 2

    async def test_stale_owner_cannot_complete(self, broker, clock):
        await broker.enqueue(JobCategory.SHIFT, "shift-1-60", PAYLOAD)
        stale = await broker.claim(JobCategory.SHIFT)
        clock.advance(seconds=31)
        current = await broker.claim(JobCategory.SHIFT)

        assert await broker.complete(stale) is False
        assert await broker.complete(current) is True
        assert (await broker.get_job("shift-1-60")).status == JobStatus.COMPLETED.value

    async def test_heartbeat_extends_lease(self, broker, clock):
        await broker.enqueue(JobCategory.SHIFT, "shift-1-60", PAYLOAD)
        job = await broker.claim(JobCategory.SHIFT)

        clock.advance(seconds=20)
        assert await broker.heartbeat(job) is True
        clock.advance(seconds=20)

        assert await broker.claim(JobCategory.SHIFT) is None


@pytest.mark.integration
class TestProcessNext:
    async def test_success_completes_job(self, broker):
        seen = []

        async def handler(job):
            seen.append(job.id)

        await broker.enqueue(JobCategory.APPOINTMENT, "appointment-1-30", PAYLOAD)

        assert await broker.process_next(JobCategory.APPOINTMENT, handler) is JobStatus.COMPLETED
        assert seen == ["appointment-1-30"]
        row = await broker.get_job("appointment-1-30")
        assert row.status == JobStatus.COMPLETED.value
        assert row.finished_at is not None

    async def test_empty_queue_returns_none(self, broker):
        async def handler(job):
            raise AssertionError("should not be called")

        assert await broker.process_next(JobCategory.APPOINTMENT, handler) is None

    async def test_transient_failure_retries_with_backoff(self, broker, clock):
        handler = failing(TransientError("connect ECONNREFUSED"))
        await broker.enqueue(JobCategory.MEDICATION, "medication-1-0", PAYLOAD)

        assert await broker.process_next(JobCategory.MEDICATION, handler) is JobStatus.RETRY_WAIT
        row = await broker.get_job("medication-1-0")
        assert row.status == JobStatus.RETRY_WAIT.value
        assert row.error_kind == "transient"
        assert row.available_at == clock.now + timedelta(milliseconds=1000)

        # Not before the backoff has elapsed
        assert await broker.process_next(JobCategory.MEDICATION, handler) is None

        clock.advance(seconds=1)
        assert await broker.process_next(JobCategory.MEDICATION, handler) is JobStatus.RETRY_WAIT
        row = await broker.get_job("medication-1-0")
        assert row.attempt == 2
        assert row.available_at == clock.now + timedelta(milliseconds=2000)

    async def test_transient_failure_dead_letters_after_max_attempts(self, broker, clock):
        handler = failing(TransientError("gateway timeout"))
        await broker.enqueue(JobCategory.MEDICATION, "medication-1-0", PAYLOAD)

        outcomes = []
        for _ in range(3):
            outcomes.append(await broker.process_next(JobCategory.MEDICATION, handler))
            clock.advance(minutes=1)

        assert outcomes == [JobStatus.RETRY_WAIT, JobStatus.RETRY_WAIT, JobStatus.DEAD_LETTERED]
        assert (await broker.get_job("medication-1-0")).status == JobStatus.DEAD_LETTERED.value

        dead_letter = await broker.claim(JobCategory.DEAD_LETTER)
        assert dead_letter.id.startswith("dlq-medication-1-0-")
        assert dead_letter.payload["original_payload"] == PAYLOAD
        assert dead_letter.payload["attempts_made"] == 3
        assert dead_letter.payload["error_kind"] == "transient"

    @pytest.mark.parametrize(
        "error,kind",
        [
            (ValidationError("Invalid MedicationReminderJob payload"), "validation"),
            (PermanentError("Medication was deleted"), "permanent"),
        ],
    )
    async def test_non_retryable_errors_dead_letter_immediately(self, broker, clock, error, kind):
        handler = failing(error)
        await broker.enqueue(JobCategory.MEDICATION, "medication-1-0", PAYLOAD)

        assert await broker.process_next(JobCategory.MEDICATION, handler) is JobStatus.DEAD_LETTERED

        dead_letter = await broker.claim(JobCategory.DEAD_LETTER)
        assert dead_letter.id == dead_letter_job_id("medication-1-0", clock.now)
        assert dead_letter.payload["attempts_made"] == 1
        assert dead_letter.payload["error_kind"] == kind

    async def test_dead_letter_jobs_are_never_dead_lettered(self, broker, clock):
        handler = failing(TransientError("alert webhook down"))
        await broker.enqueue(JobCategory.DEAD_LETTER, "dlq-x-1", PAYLOAD)

        outcomes = []
        for _ in range(3):
            outcomes.append(await broker.process_next(JobCategory.DEAD_LETTER, handler))
            clock.advance(minutes=1)

        assert outcomes[-1] is JobStatus.DEAD_LETTERED
        assert await broker.counts(JobCategory.DEAD_LETTER) == {"dead_lettered": 1}

    async def test_job_stalled_on_final_attempt_is_dead_lettered(self, broker, clock):
        await broker.enqueue(JobCategory.SHIFT, "shift-1-15", PAYLOAD, max_attempts=1)
        await broker.claim(JobCategory.SHIFT)
        clock.advance(seconds=31)

        async def handler(job):
            raise AssertionError("should not run past max attempts")

        assert await broker.process_next(JobCategory.SHIFT, handler) is JobStatus.DEAD_LETTERED


@pytest.mark.integration
class TestDeadLetterRecords:
    def record(self, clock, job_id="appointment-9-30"):
        return DeadLetterJob(
            original_category="appointment",
            original_job_id=job_id,
            original_payload={"appointment_id": "9"},
            error="PermanentError: gone",
            error_kind="permanent",
            failed_at=clock.now,
            attempts_made=1,
        )

    async def test_save_is_idempotent(self, broker, clock):
        record = self.record(clock)

        first = await broker.save_dead_letter(record)
        second = await broker.save_dead_letter(record)

        assert first == second
        records = await broker.list_dead_letters()
        assert [r.id for r in records] == [first]
        assert records[0].original_payload == {"appointment_id": "9"}

    async def test_list_filters_by_category(self, broker, clock):
        await broker.save_dead_letter(self.record(clock))

        assert await broker.list_dead_letters(category=JobCategory.MEDICATION) == []
        assert len(await broker.list_dead_letters(category=JobCategory.APPOINTMENT)) == 1

    async def test_replay_enqueues_original_payload(self, broker, clock):
        record_id = await broker.save_dead_letter(self.record(clock))

        job_id = await broker.replay_dead_letter(record_id)

        assert job_id == f"appointment-9-30-replay-{record_id}"
        job = await broker.claim(JobCategory.APPOINTMENT)
        assert job.id == job_id
        assert job.payload == {"appointment_id": "9"}

    async def test_replay_is_deterministic(self, broker, clock):
        record_id = await broker.save_dead_letter(self.record(clock))

        assert await broker.replay_dead_letter(record_id) == await broker.replay_dead_letter(record_id)
        assert await broker.counts(JobCategory.APPOINTMENT) == {"pending": 1}

    async def test_replay_unknown_record(self, broker):
        with pytest.raises(EntityNotFoundError):
            await broker.replay_dead_letter("does-not-exist")


@pytest.mark.integration
class TestWorkerHandle:
    async def test_pool_processes_jobs_and_closes_idempotently(self, broker):
        processed = []

        async def handler(job):
            processed.append(job.id)

        for index in range(5):
            await broker.enqueue(JobCategory.NOTIFICATION, f"push-key-{index}", PAYLOAD)

        handle = broker.consume(JobCategory.NOTIFICATION, 3, handler)
        assert handle.is_running()

        for _ in range(200):
            if len(processed) == 5:
                break
            await asyncio.sleep(0.02)

        await handle.close(timeout=5)
        await handle.close(timeout=5)

        assert sorted(processed) == [f"push-key-{index}" for index in range(5)]
        assert handle.processed == 5
        assert not handle.is_running()

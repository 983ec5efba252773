"""Shared fixtures: a temp-file SQLite database per test, a frozen clock,
seed helpers and in-memory channel sinks."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

import pytest

from reminder_engine.broker import QueueBroker
from reminder_engine.channels import ChannelSinks, SendOutcome
from reminder_engine.config import ReminderConfig, RetryConfig, RetryPolicy, WorkerPoolConfig
from reminder_engine.database import create_engine_for, create_session_factory, init_db
from reminder_engine.models import (
    Appointment,
    CareRecipient,
    CaregiverShift,
    Family,
    FamilyMember,
    Medication,
    MedicationLog,
    PushSubscription,
    User,
)
from reminder_engine.models.enums import MemberRole
from reminder_engine.services.domain_store import DomainStore

# Saturday, June 1 2024, 13:30 UTC
FROZEN_NOW = datetime(2024, 6, 1, 13, 30, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakePush:
    """Push sink recording sends; outcomes are looked up by endpoint."""

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self.outcomes: Dict[str, SendOutcome] = {}
        self.sent: List[dict] = []

    async def send(self, endpoint, title, body, data=None, priority="normal"):
        self.sent.append({"endpoint": endpoint, "title": title, "body": body, "data": data, "priority": priority})
        return self.outcomes.get(endpoint, SendOutcome.OK)

    async def close(self):
        pass


class FakeEmail:
    def __init__(self, enabled: bool = True, outcome: SendOutcome = SendOutcome.OK):
        self.enabled = enabled
        self.outcome = outcome
        self.sent: List[dict] = []

    async def send(self, address, subject, body):
        self.sent.append({"address": address, "subject": subject, "body": body})
        return self.outcome

    async def close(self):
        pass


class FakeSms:
    def __init__(self, enabled: bool = True, outcome: SendOutcome = SendOutcome.OK):
        self.enabled = enabled
        self.outcome = outcome
        self.sent: List[dict] = []

    async def send(self, phone, text):
        self.sent.append({"phone": phone, "text": text})
        return self.outcome

    async def close(self):
        pass


@dataclass
class CareCircle:
    family: Family
    care_recipient: CareRecipient
    users: List[User] = field(default_factory=list)

    @property
    def user_ids(self) -> List[str]:
        return [user.id for user in self.users]


class Seeder:
    """Inserts domain rows for tests."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def add(self, *rows):
        async with self.session_factory() as session:
            session.add_all(rows)
            await session.commit()
        return rows[0] if len(rows) == 1 else rows

    async def user(self, **kwargs) -> User:
        kwargs.setdefault("full_name", "Test User")
        kwargs.setdefault("email", "user@example.com")
        return await self.add(User(**kwargs))

    async def care_circle(
        self,
        roles: Sequence[MemberRole] = (MemberRole.ADMIN, MemberRole.CAREGIVER),
        recipient_timezone: Optional[str] = "UTC",
        inactive_roles: Sequence[MemberRole] = (),
    ) -> CareCircle:
        """A family with one care recipient and one active member per role."""
        family = await self.add(Family(name="The Smiths"))
        care_recipient = await self.add(CareRecipient(
            family_id=family.id,
            full_name="Margaret Smith",
            preferred_name="Mom",
            timezone=recipient_timezone,
        ))

        circle = CareCircle(family, care_recipient)
        for index, role in enumerate(roles):
            user = await self.user(full_name=f"{role.value.title()} {index}", email=f"member{index}@example.com")
            await self.add(FamilyMember(family_id=family.id, user_id=user.id, role=role.value, is_active=True))
            circle.users.append(user)
        for index, role in enumerate(inactive_roles):
            user = await self.user(full_name=f"Former {index}", email=f"former{index}@example.com")
            await self.add(FamilyMember(family_id=family.id, user_id=user.id, role=role.value, is_active=False))
        return circle

    async def medication(self, care_recipient: CareRecipient, **kwargs) -> Medication:
        kwargs.setdefault("name", "Lisinopril")
        kwargs.setdefault("dosage", "10mg")
        kwargs.setdefault("scheduled_times", ["14:00"])
        return await self.add(Medication(care_recipient_id=care_recipient.id, **kwargs))

    async def dose_log(self, medication: Medication, scheduled_time: datetime) -> MedicationLog:
        return await self.add(MedicationLog(medication_id=medication.id, scheduled_time=scheduled_time))

    async def appointment(self, care_recipient: CareRecipient, start_time: datetime, **kwargs) -> Appointment:
        kwargs.setdefault("title", "Cardiology follow-up")
        kwargs.setdefault("location", "St. Mary's Clinic")
        return await self.add(Appointment(care_recipient_id=care_recipient.id, start_time=start_time, **kwargs))

    async def shift(self, care_recipient: CareRecipient, caregiver: User, start_time: datetime, **kwargs) -> CaregiverShift:
        return await self.add(CaregiverShift(
            care_recipient_id=care_recipient.id,
            caregiver_id=caregiver.id,
            start_time=start_time,
            end_time=start_time + timedelta(hours=8),
            **kwargs,
        ))

    async def push_subscription(self, user: User, endpoint: str) -> PushSubscription:
        return await self.add(PushSubscription(user_id=user.id, endpoint=endpoint, platform="web"))


@pytest.fixture
async def db_engine(tmp_path):
    """Fresh SQLite database file with every table created."""
    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'reminders.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def clock():
    return FrozenClock(FROZEN_NOW)


@pytest.fixture
def retry_config():
    """Three attempts with a 1s base delay so retry tests stay short."""
    return RetryConfig(default=RetryPolicy(max_attempts=3, base_delay_ms=1000, multiplier=2.0, max_delay_ms=60_000))


@pytest.fixture
def reminders():
    return ReminderConfig()


@pytest.fixture
def broker(session_factory, retry_config, clock):
    return QueueBroker(
        session_factory,
        retry=retry_config,
        workers=WorkerPoolConfig(poll_interval_seconds=0.01, visibility_timeout_seconds=30),
        clock=clock,
    )


@pytest.fixture
def store(session_factory):
    return DomainStore(session_factory)


@pytest.fixture
def seed(session_factory):
    return Seeder(session_factory)


@pytest.fixture
def sinks():
    return ChannelSinks(push=FakePush(), email=FakeEmail(), sms=FakeSms())

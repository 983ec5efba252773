"""
Users, families and the people they care for.
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, Boolean, ForeignKey, UniqueConstraint
from reminder_engine.database import Base, UTCDateTime
from reminder_engine.models.enums import MemberRole


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    """A person who can receive notifications."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), nullable=True)
    full_name = Column(String(200), nullable=False)
    phone = Column(String(32), nullable=True)
    phone_verified = Column(Boolean, default=False, nullable=False)
    timezone = Column(String(64), nullable=True)  # IANA zone, e.g. America/New_York

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)


class Family(Base):
    """A care circle."""

    __tablename__ = "families"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(200), nullable=False)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)


class FamilyMember(Base):
    """Membership of a user in a family."""

    __tablename__ = "family_members"
    __table_args__ = (UniqueConstraint("family_id", "user_id", name="uq_family_member"),)

    id = Column(String(36), primary_key=True, default=new_id)
    family_id = Column(String(36), ForeignKey("families.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(20), nullable=False, default=MemberRole.CAREGIVER.value)
    is_active = Column(Boolean, default=True, nullable=False)


class CareRecipient(Base):
    """The person medications, appointments and shifts are for."""

    __tablename__ = "care_recipients"

    id = Column(String(36), primary_key=True, default=new_id)
    family_id = Column(String(36), ForeignKey("families.id", ondelete="CASCADE"), nullable=False, index=True)
    full_name = Column(String(200), nullable=False)
    preferred_name = Column(String(100), nullable=True)
    timezone = Column(String(64), nullable=True)

    @property
    def display_name(self) -> str:
        return self.preferred_name or self.full_name

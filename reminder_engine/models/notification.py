"""
Notification and push subscription models.
"""
from sqlalchemy import Column, String, Text, Boolean, ForeignKey, JSON, UniqueConstraint
from reminder_engine.database import Base, UTCDateTime
from reminder_engine.models.family import new_id, utcnow


class Notification(Base):
    """
    In-app notification, one per (user, type, idempotency key).

    The unique constraint is the at-most-once guarantee for reminders;
    workers also check before inserting.
    """

    __tablename__ = "notifications"
    __table_args__ = (
        UniqueConstraint("user_id", "type", "idempotency_key", name="uq_notification_idempotency"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(50), nullable=False)
    title = Column(String(100), nullable=False)
    body = Column(Text, nullable=False)
    data = Column(JSON, nullable=False, default=dict)  # includes idempotencyKey
    idempotency_key = Column(String(255), nullable=False)
    read = Column(Boolean, default=False, nullable=False)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False, index=True)


class PushSubscription(Base):
    """A device/browser push endpoint registered by a user."""

    __tablename__ = "push_subscriptions"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    endpoint = Column(Text, nullable=False)
    platform = Column(String(20), nullable=True)  # web, ios, android

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

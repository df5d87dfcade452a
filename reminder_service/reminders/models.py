"""
Reminder, idempotency record and scanner lease models
"""
import enum
import uuid

from sqlalchemy import Column, String, DateTime, Integer, Index, JSON
from sqlalchemy.dialects.postgresql import JSONB

from reminder_service.db.base import Base


JSONType = JSON().with_variant(JSONB(), "postgresql")


class ReminderStatus(str, enum.Enum):
    """Lifecycle states of a reminder"""
    PENDING = "pending"
    SCHEDULED = "scheduled"
    NOTIFIED = "notified"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ReminderSource(str, enum.Enum):
    """Where a reminder originated"""
    MANUAL = "manual"
    LMS = "LMS"
    CALENDAR = "calendar"
    EXTERNAL = "external"


class Reminder(Base):
    """A time-bound reminder owned by a single user.

    ``notify_at`` is ``due_at - advance_minutes``; it is kept in step with
    both columns so the due-reminder predicate stays a plain comparison.
    """
    __tablename__ = "reminders"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, nullable=False, index=True)
    title = Column(String(255), nullable=False)
    due_at = Column(DateTime(timezone=True), nullable=False)
    notify_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(16), nullable=False, default=ReminderStatus.PENDING.value)
    source = Column(String(16), nullable=False, default=ReminderSource.MANUAL.value)
    advance_minutes = Column(Integer, nullable=False, default=15)
    meta = Column("metadata", JSONType, nullable=False, default=dict)
    notified_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_reminders_due_scan", "status", "notify_at"),
        Index("ix_reminders_user_created", "user_id", "created_at"),
    )

    def __repr__(self):
        return f"<Reminder(id={self.id}, user={self.user_id}, status={self.status}, due={self.due_at})>"


class IdempotencyRecord(Base):
    """Outcome of a creation request keyed by the client's Idempotency-Key.

    A row without ``response_status`` is a reservation held by the request
    currently executing under that key.
    """
    __tablename__ = "idempotency_keys"

    key = Column("idempotency_key", String(36), primary_key=True)
    resource_id = Column(String(36), nullable=True)
    resource_type = Column(String(32), nullable=False, default="reminder")
    request_hash = Column(String(64), nullable=False)
    response_status = Column(Integer, nullable=True)
    response_body = Column(JSONType, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)

    @property
    def is_complete(self) -> bool:
        return self.response_status is not None


class ScannerLease(Base):
    """Named lease held by the scan currently running in any worker process.

    A lease whose ``expires_at`` has passed may be taken over by the next tick.
    """
    __tablename__ = "scanner_leases"

    name = Column(String(64), primary_key=True)
    holder = Column(String(32), nullable=False)
    acquired_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<ScannerLease(name={self.name}, holder={self.holder}, expires={self.expires_at})>"

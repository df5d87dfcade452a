from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from reminder_service.utils.timezone import to_utc_aware

from .lifecycle import CLAIMABLE_STATUSES, INITIAL_STATUS
from .models import IdempotencyRecord, Reminder, ReminderStatus, ScannerLease


_CLAIMABLE = [s.value for s in CLAIMABLE_STATUSES]


def notify_time(due_at: datetime, advance_minutes: int) -> datetime:
    return due_at - timedelta(minutes=advance_minutes)


# ---------------------------------------------------------------------------
# Reminders
# ---------------------------------------------------------------------------

def create_reminder(db: Session, fields: Dict[str, Any], now: datetime) -> Reminder:
    reminder = Reminder(
        user_id=fields["user_id"],
        title=fields["title"],
        due_at=fields["due_at"],
        notify_at=notify_time(fields["due_at"], fields["advance_minutes"]),
        status=INITIAL_STATUS.value,
        source=fields["source"],
        advance_minutes=fields["advance_minutes"],
        meta=fields.get("metadata") or {},
        created_at=now,
        updated_at=now,
    )
    db.add(reminder)
    db.commit()
    db.refresh(reminder)
    return reminder


def get_reminder(db: Session, reminder_id: str) -> Optional[Reminder]:
    return db.get(Reminder, reminder_id, populate_existing=True)


def list_reminders(
    db: Session,
    user_id: Optional[str] = None,
    status: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> Tuple[List[Reminder], int]:
    conditions = []
    if user_id:
        conditions.append(Reminder.user_id == user_id)
    if status:
        conditions.append(Reminder.status == status)

    total = db.execute(select(func.count()).select_from(Reminder).where(*conditions)).scalar_one()
    stmt = (
        select(Reminder)
        .where(*conditions)
        .order_by(Reminder.created_at.desc(), Reminder.id)
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(db.execute(stmt).scalars()), total


def update_reminder(
    db: Session,
    reminder_id: str,
    values: Dict[str, Any],
    expected_status: str,
) -> Optional[Reminder]:
    """Compare-and-set update: applies only while the status is still ``expected_status``.

    Returns the refreshed reminder, or None when the row is gone or its
    status moved underneath the caller.
    """
    result = db.execute(
        update(Reminder)
        .where(Reminder.id == reminder_id, Reminder.status == expected_status)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount != 1:
        return None
    return get_reminder(db, reminder_id)


def find_due_candidates(db: Session, now: datetime, limit: int = 500) -> List[Reminder]:
    stmt = (
        select(Reminder)
        .where(Reminder.status.in_(_CLAIMABLE))
        .where(Reminder.notified_at.is_(None))
        .where(Reminder.notify_at <= now)
        .order_by(Reminder.due_at.asc())
        .limit(limit)
    )
    return list(db.execute(stmt).scalars())


def claim_due(db: Session, reminder_id: str, now: datetime) -> bool:
    """Atomically mark a due reminder as notified.

    Single conditional UPDATE; exactly one concurrent caller sees rowcount 1.
    """
    result = db.execute(
        update(Reminder)
        .where(
            Reminder.id == reminder_id,
            Reminder.notified_at.is_(None),
            Reminder.status.in_(_CLAIMABLE),
            Reminder.notify_at <= now,
        )
        .values(status=ReminderStatus.NOTIFIED.value, notified_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


# ---------------------------------------------------------------------------
# Idempotency records
# ---------------------------------------------------------------------------

def find_idempotency_record(db: Session, key: str, now: datetime) -> Optional[IdempotencyRecord]:
    """Live record for ``key``; an expired row is removed and reported as absent."""
    record = db.get(IdempotencyRecord, key, populate_existing=True)
    if record is None:
        return None
    if record.expires_at is not None and to_utc_aware(record.expires_at) <= now:
        db.execute(
            delete(IdempotencyRecord)
            .where(IdempotencyRecord.key == key, IdempotencyRecord.expires_at <= now)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        db.expunge(record)
        return None
    return record


def reserve_idempotency_key(
    db: Session,
    key: str,
    request_hash: str,
    resource_type: str,
    now: datetime,
    expires_at: datetime,
) -> bool:
    """Insert a reservation row. False means another request already holds the key."""
    db.add(
        IdempotencyRecord(
            key=key,
            request_hash=request_hash,
            resource_type=resource_type,
            created_at=now,
            expires_at=expires_at,
        )
    )
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return False
    return True


def complete_idempotency_record(
    db: Session,
    key: str,
    resource_id: Optional[str],
    response_status: int,
    response_body: Any,
    expires_at: datetime,
    reserved_at: datetime,
) -> bool:
    """Store the outcome on the reservation taken at ``reserved_at``.

    False when that reservation is gone (expired and taken over by another request).
    """
    result = db.execute(
        update(IdempotencyRecord)
        .where(
            IdempotencyRecord.key == key,
            IdempotencyRecord.response_status.is_(None),
            IdempotencyRecord.created_at == reserved_at,
        )
        .values(
            resource_id=resource_id,
            response_status=response_status,
            response_body=response_body,
            expires_at=expires_at,
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def release_idempotency_key(db: Session, key: str, reserved_at: datetime) -> None:
    db.execute(
        delete(IdempotencyRecord)
        .where(
            IdempotencyRecord.key == key,
            IdempotencyRecord.response_status.is_(None),
            IdempotencyRecord.created_at == reserved_at,
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()


def purge_expired_idempotency_records(db: Session, now: datetime) -> int:
    result = db.execute(
        delete(IdempotencyRecord)
        .where(IdempotencyRecord.expires_at <= now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount or 0


# Scanner lease
# ---------------------------------------------------------------------------

def acquire_lease(db: Session, name: str, holder: str, now: datetime, expires_at: datetime) -> bool:
    """Take the named lease, or take it over once the current holder's expiry has passed."""
    try:
        db.execute(insert(ScannerLease).values(name=name, holder=holder, acquired_at=now, expires_at=expires_at))
        db.commit()
        return True
    except IntegrityError:
        db.rollback()

    result = db.execute(
        update(ScannerLease)
        .where(ScannerLease.name == name, ScannerLease.expires_at <= now)
        .values(holder=holder, acquired_at=now, expires_at=expires_at)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def release_lease(db: Session, name: str, holder: str) -> None:
    # A holder whose lease was taken over must not release the newer one
    db.execute(
        delete(ScannerLease)
        .where(ScannerLease.name == name, ScannerLease.holder == holder)
        .execution_options(synchronize_session=False)
    )
    db.commit()

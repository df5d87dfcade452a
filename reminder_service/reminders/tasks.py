from functools import lru_cache

from celery import shared_task
from celery.signals import worker_ready
from celery.utils.log import get_task_logger

from reminder_service.core.config import get_settings
from reminder_service.db.session import build_engine, build_session_factory
from reminder_service.utils.timezone import utc_now
from .publisher import EventPublisher
from .repository import purge_expired_idempotency_records
from .scanner import DueReminderScanner


logger = get_task_logger(__name__)

_settings = get_settings()


@lru_cache(maxsize=1)
def _session_factory():
    return build_session_factory(build_engine(_settings))


@lru_cache(maxsize=1)
def _publisher() -> EventPublisher:
    return EventPublisher.from_settings(_settings)


@lru_cache(maxsize=1)
def _scanner() -> DueReminderScanner:
    return DueReminderScanner(
        _session_factory(),
        _publisher(),
        batch_size=_settings.SCHEDULER_BATCH_SIZE,
        max_tick_seconds=_settings.SCAN_MAX_DURATION_SECONDS,
    )


@worker_ready.connect
def declare_topology_on_start(**kwargs) -> None:
    try:
        _publisher().declare_topology()
    except Exception as e:
        logger.warning(f"Broker topology declaration failed: {e}")


@shared_task(name="reminders.scan_due", soft_time_limit=_settings.SCAN_MAX_DURATION_SECONDS)
def scan_due_reminders_task() -> dict:
    """Claim due reminders and publish reminder.due for each. Returns the scan summary."""
    return _scanner().tick().as_dict()


@shared_task(name="reminders.purge_idempotency_records")
def purge_idempotency_records_task() -> int:
    """Delete idempotency records whose retention window has passed."""
    db = _session_factory()()
    try:
        purged = purge_expired_idempotency_records(db, utc_now())
    finally:
        db.close()
    if purged:
        logger.info("Purged %d expired idempotency records", purged)
    return purged

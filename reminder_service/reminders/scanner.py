"""
Due-reminder scanner.

Each tick selects reminders whose notification time has arrived and claims
them one by one with a conditional UPDATE. Only the caller whose claim
changed the row publishes ``reminder.due``, so overlapping ticks (in one
process or across workers) publish at most once per reminder. A lease row
in the database keeps a second tick, from this or any other worker process,
from starting while one is still within its time budget.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional

from sqlalchemy.orm import Session, sessionmaker

from reminder_service.utils.timezone import Clock, utc_now
from . import repository
from .metrics import (
    claims_lost_total,
    reminder_transitions_total,
    reminders_claimed_total,
    scanner_ticks_skipped_total,
    scanner_ticks_total,
)
from .models import Reminder, ReminderStatus
from .publisher import EventPublisher
from .schemas import ReminderRead


logger = logging.getLogger(__name__)

LEASE_NAME = "due-reminder-scan"


@dataclass
class ScanResult:
    candidates: int = 0
    claimed: int = 0
    published: int = 0
    publish_failures: int = 0
    errors: int = 0
    skipped: bool = False

    def as_dict(self) -> dict:
        return {
            "candidates": self.candidates,
            "claimed": self.claimed,
            "published": self.published,
            "publish_failures": self.publish_failures,
            "errors": self.errors,
            "skipped": self.skipped,
        }


class DueReminderScanner:
    def __init__(
        self,
        session_factory: sessionmaker,
        publisher: EventPublisher,
        clock: Clock = utc_now,
        batch_size: int = 500,
        max_tick_seconds: float = 300,
    ):
        self.session_factory = session_factory
        self.publisher = publisher
        self.clock = clock
        self.batch_size = batch_size
        self.max_tick_seconds = max_tick_seconds

    def tick(self) -> ScanResult:
        """Run one scan unless a previous one is still within its time budget."""
        db: Session = self.session_factory()
        try:
            now = self.clock()
            holder = self._enter(db, now)
            if holder is None:
                scanner_ticks_skipped_total.inc()
                logger.info("Previous scan still running, skipping this tick")
                return ScanResult(skipped=True)

            try:
                scanner_ticks_total.inc()
                candidates = repository.find_due_candidates(db, now, limit=self.batch_size)
                result = self.process(db, candidates, now)
            finally:
                self._leave(db, holder)
            if result.candidates:
                logger.info("Scan finished: %s", result.as_dict())
            return result
        finally:
            db.close()

    def process(self, db: Session, candidates: List[Reminder], now) -> ScanResult:
        result = ScanResult(candidates=len(candidates))
        for reminder in candidates:
            reminder_id = reminder.id
            try:
                if not repository.claim_due(db, reminder_id, now):
                    claims_lost_total.inc()
                    logger.debug("Reminder %s already claimed elsewhere", reminder_id)
                    continue

                result.claimed += 1
                reminders_claimed_total.inc()
                reminder_transitions_total.labels(to_status=ReminderStatus.NOTIFIED.value).inc()

                claimed = repository.get_reminder(db, reminder_id)
                data = ReminderRead.from_model(claimed).to_json()
                if self.publisher.publish_reminder_event("reminder_due", data):
                    result.published += 1
                else:
                    # Stays notified; consumers never see a second due event for it
                    result.publish_failures += 1
                    logger.error("Reminder %s notified but reminder.due was not published", reminder_id)
            except Exception:
                result.errors += 1
                db.rollback()
                logger.exception("Failed to process due reminder %s", reminder_id)
        return result

    def _enter(self, db: Session, now) -> Optional[str]:
        holder = uuid.uuid4().hex
        expires_at = now + timedelta(seconds=self.max_tick_seconds)
        if not repository.acquire_lease(db, LEASE_NAME, holder, now, expires_at):
            return None
        return holder

    def _leave(self, db: Session, holder: str) -> None:
        db.rollback()
        repository.release_lease(db, LEASE_NAME, holder)

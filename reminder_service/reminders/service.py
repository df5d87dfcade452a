"""
Reminder service: creation, reads and lifecycle-checked updates
"""
import logging
import math
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from reminder_service.core.errors import InvalidTransition, NotFound, ValidationError
from reminder_service.utils.timezone import Clock, to_utc_aware, utc_now
from . import repository
from .background import BackgroundTaskQueue
from .lifecycle import ensure_transition, raise_for_field_errors
from .metrics import reminder_transitions_total, reminders_created_total
from .models import Reminder, ReminderStatus
from .orchestrator import OrchestratorClient
from .publisher import EventPublisher
from .schemas import Pagination, ReminderCreate, ReminderPage, ReminderRead, ReminderUpdate


logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 20


class ReminderService:
    """Reminder use cases on top of the repository.

    Status changes go through the lifecycle table first and are persisted
    with a compare-and-set on the status the caller saw. Events are handed
    to the background queue when one is configured, otherwise published
    inline; either way a broker failure never undoes the write.
    """

    def __init__(
        self,
        db: Session,
        publisher: EventPublisher,
        background: Optional[BackgroundTaskQueue] = None,
        clock: Clock = utc_now,
        orchestrator: Optional[OrchestratorClient] = None,
    ):
        self.db = db
        self.publisher = publisher
        self.background = background
        self.clock = clock
        self.orchestrator = orchestrator

    def create(self, data: ReminderCreate) -> ReminderRead:
        now = self.clock()
        fields = data.model_dump()
        raise_for_field_errors(fields, now)

        fields["source"] = data.source.value
        reminder = repository.create_reminder(self.db, fields, now)
        reminders_created_total.inc()
        logger.info("Created reminder %s for user %s due %s", reminder.id, reminder.user_id, reminder.due_at)

        read = ReminderRead.from_model(reminder)
        event = read.to_json()
        self._publish("reminder_created", event)
        if self.orchestrator is not None:
            self._submit(f"start process for {reminder.id}", self.orchestrator.start_reminder_process, event)
        return read

    def get(self, reminder_id: str, user_id: Optional[str] = None) -> ReminderRead:
        return ReminderRead.from_model(self._load(reminder_id, user_id))

    def list(
        self,
        user_id: Optional[str] = None,
        status: Optional[ReminderStatus] = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> ReminderPage:
        errors: List[Dict[str, Any]] = []
        if page < 1:
            errors.append({"field": "page", "message": "must be at least 1", "code": "OUT_OF_RANGE"})
        if limit < 1 or limit > MAX_PAGE_SIZE:
            errors.append(
                {"field": "limit", "message": f"must be between 1 and {MAX_PAGE_SIZE}", "code": "OUT_OF_RANGE"}
            )
        if errors:
            raise ValidationError("Invalid pagination parameters", errors=errors)

        items, total = repository.list_reminders(
            self.db,
            user_id=user_id,
            status=status.value if status else None,
            page=page,
            limit=limit,
        )
        return ReminderPage(
            data=[ReminderRead.from_model(i) for i in items],
            pagination=Pagination(
                page=page,
                limit=limit,
                total=total,
                total_pages=math.ceil(total / limit) if total else 0,
            ),
        )

    def update(self, reminder_id: str, data: ReminderUpdate, user_id: Optional[str] = None) -> ReminderRead:
        changes = data.changes()
        if not changes:
            raise ValidationError("At least one field must be provided")

        reminder = self._load(reminder_id, user_id)
        current = ReminderStatus(reminder.status)
        now = self.clock()

        target: Optional[ReminderStatus] = changes.get("status")
        if target is not None:
            ensure_transition(current, target)
        raise_for_field_errors(changes, now)

        values: Dict[str, Any] = {"updated_at": now}
        for field in ("title", "due_at", "advance_minutes"):
            if field in changes:
                values[field] = changes[field]
        if "metadata" in changes:
            values["meta"] = changes["metadata"]
        if "due_at" in changes or "advance_minutes" in changes:
            values["notify_at"] = repository.notify_time(
                changes.get("due_at", to_utc_aware(reminder.due_at)),
                changes.get("advance_minutes", reminder.advance_minutes),
            )
        if target is not None:
            values["status"] = target.value
            if target == ReminderStatus.NOTIFIED and reminder.notified_at is None:
                values["notified_at"] = now

        updated = self._compare_and_set(reminder_id, values, current)
        if target is not None:
            reminder_transitions_total.labels(to_status=target.value).inc()
            logger.info("Reminder %s moved %s -> %s", reminder_id, current.value, target.value)

        read = ReminderRead.from_model(updated)
        self._publish("reminder_updated", read.to_json())
        return read

    def delete(self, reminder_id: str, user_id: Optional[str] = None) -> None:
        """Soft delete: the reminder is cancelled, never removed."""
        reminder = self._load(reminder_id, user_id)
        current = ReminderStatus(reminder.status)
        if current == ReminderStatus.CANCELLED:
            return
        ensure_transition(current, ReminderStatus.CANCELLED)

        now = self.clock()
        updated = self._compare_and_set(
            reminder_id,
            {"status": ReminderStatus.CANCELLED.value, "updated_at": now},
            current,
        )
        reminder_transitions_total.labels(to_status=ReminderStatus.CANCELLED.value).inc()
        logger.info("Reminder %s cancelled", reminder_id)
        self._publish("reminder_updated", ReminderRead.from_model(updated).to_json())

    # ------------------------------------------------------------------

    def _load(self, reminder_id: str, user_id: Optional[str]) -> Reminder:
        reminder = repository.get_reminder(self.db, reminder_id)
        # Someone else's reminder is reported exactly like a missing one
        if reminder is None or (user_id is not None and reminder.user_id != user_id):
            raise NotFound(f"Reminder {reminder_id} not found")
        return reminder

    def _compare_and_set(self, reminder_id: str, values: Dict[str, Any], expected: ReminderStatus) -> Reminder:
        updated = repository.update_reminder(self.db, reminder_id, values, expected.value)
        if updated is not None:
            return updated
        latest = repository.get_reminder(self.db, reminder_id)
        if latest is None:
            raise NotFound(f"Reminder {reminder_id} not found")
        raise InvalidTransition(
            f"Reminder {reminder_id} changed concurrently (now '{latest.status}'), retry the request"
        )

    def _publish(self, event_type: str, data: Dict[str, Any]) -> None:
        self._submit(
            f"publish {event_type} for {data.get('id')}",
            self.publisher.publish_reminder_event,
            event_type,
            data,
        )

    def _submit(self, description: str, fn, *args) -> None:
        if self.background is not None:
            self.background.submit(description, fn, *args)
            return
        try:
            fn(*args)
        except Exception:
            logger.exception("Side effect failed: %s", description)

"""
Reminder lifecycle state machine and field rules.

Everything here is pure: no database, no clock of its own. Callers check a
transition before persisting any status change.
"""
from collections import deque
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from reminder_service.core.errors import InvalidTransition, ValidationError
from .models import ReminderStatus


MIN_ADVANCE_MINUTES = 0
MAX_ADVANCE_MINUTES = 10080  # 7 days
MAX_TITLE_LENGTH = 255

INITIAL_STATUS = ReminderStatus.PENDING

ALLOWED_TRANSITIONS: Dict[ReminderStatus, frozenset] = {
    ReminderStatus.PENDING: frozenset({ReminderStatus.SCHEDULED, ReminderStatus.CANCELLED}),
    ReminderStatus.SCHEDULED: frozenset({ReminderStatus.NOTIFIED, ReminderStatus.CANCELLED}),
    ReminderStatus.NOTIFIED: frozenset({ReminderStatus.COMPLETED, ReminderStatus.CANCELLED}),
    ReminderStatus.COMPLETED: frozenset(),
    ReminderStatus.CANCELLED: frozenset(),
}

def _as_status(value) -> ReminderStatus:
    return value if isinstance(value, ReminderStatus) else ReminderStatus(value)


def can_transition(current, target) -> bool:
    return _as_status(target) in ALLOWED_TRANSITIONS[_as_status(current)]


def ensure_transition(current, target) -> None:
    if not can_transition(current, target):
        raise InvalidTransition(
            f"Cannot transition from '{_as_status(current).value}' to '{_as_status(target).value}'"
        )


def transition_path(current, target) -> Optional[List[Tuple[ReminderStatus, ReminderStatus]]]:
    """Shortest chain of allowed edges from ``current`` to ``target``, or None."""
    start, goal = _as_status(current), _as_status(target)
    if start == goal:
        return []
    previous: Dict[ReminderStatus, ReminderStatus] = {}
    queue = deque([start])
    while queue:
        node = queue.popleft()
        for nxt in sorted(ALLOWED_TRANSITIONS[node], key=lambda s: s.value):
            if nxt in previous or nxt == start:
                continue
            previous[nxt] = node
            if nxt == goal:
                path = []
                while nxt != start:
                    path.append((previous[nxt], nxt))
                    nxt = previous[nxt]
                return list(reversed(path))
            queue.append(nxt)
    return None


# States the scanner may claim from: those with a path of allowed edges to notified
CLAIMABLE_STATUSES = tuple(s for s in ReminderStatus if transition_path(s, ReminderStatus.NOTIFIED))


# ---------------------------------------------------------------------------
# Field rules
# ---------------------------------------------------------------------------

def _error(field: str, message: str, code: str) -> Dict[str, Any]:
    return {"field": field, "message": message, "code": code}


def validate_title(title: str) -> bool:
    return 0 < len(title) <= MAX_TITLE_LENGTH


def validate_due_at(due_at: datetime, now: datetime) -> bool:
    return due_at > now


def validate_advance_minutes(minutes: int) -> bool:
    return MIN_ADVANCE_MINUTES <= minutes <= MAX_ADVANCE_MINUTES


def collect_field_errors(fields: Dict[str, Any], now: datetime) -> List[Dict[str, Any]]:
    """Check whichever of title/due_at/advance_minutes are present."""
    errors: List[Dict[str, Any]] = []
    if "title" in fields and not validate_title(fields["title"]):
        errors.append(_error("title", f"must be between 1 and {MAX_TITLE_LENGTH} characters", "INVALID_LENGTH"))
    if "due_at" in fields and not validate_due_at(fields["due_at"], now):
        errors.append(_error("dueAt", "must be a future date", "INVALID_DATE"))
    if "advance_minutes" in fields and not validate_advance_minutes(fields["advance_minutes"]):
        errors.append(
            _error(
                "advanceMinutes",
                f"must be between {MIN_ADVANCE_MINUTES} and {MAX_ADVANCE_MINUTES}",
                "OUT_OF_RANGE",
            )
        )
    return errors


def raise_for_field_errors(fields: Dict[str, Any], now: datetime) -> None:
    errors = collect_field_errors(fields, now)
    if errors:
        raise ValidationError("Request validation failed", errors=errors)

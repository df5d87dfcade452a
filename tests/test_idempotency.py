from datetime import timedelta

import pytest

from reminder_service.core.errors import IdempotencyConflict, InvalidIdempotencyKey, ValidationError
from reminder_service.reminders import repository
from reminder_service.reminders.idempotency import IdempotencyGuard, IdempotentResponse, hash_request
from reminder_service.reminders.models import IdempotencyRecord


KEY = "3f0e8a52-7c1d-4b6e-9a2f-5d8c1b7e4a90"


@pytest.fixture
def guard(db, clock):
    return IdempotencyGuard(db, clock=clock, wait_seconds=0.05, poll_interval=0.01)


class Proceed:
    def __init__(self, status_code=201, error=None):
        self.calls = 0
        self.status_code = status_code
        self.error = error

    def __call__(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return IdempotentResponse(self.status_code, {"id": f"r-{self.calls}"}, resource_id=f"r-{self.calls}")


def test_hash_ignores_key_order():
    assert hash_request({"a": 1, "b": {"x": 1, "y": 2}}) == hash_request({"b": {"y": 2, "x": 1}, "a": 1})
    assert hash_request({"a": 1}) != hash_request({"a": 2})


@pytest.mark.parametrize("key", ["", "not-a-uuid", "3f0e8a52-7c1d-1b6e-9a2f-5d8c1b7e4a90"])
def test_rejects_malformed_keys(guard, key):
    proceed = Proceed()
    with pytest.raises(InvalidIdempotencyKey):
        guard.execute(key, {"a": 1}, proceed)
    assert proceed.calls == 0


def test_uppercase_key_accepted(guard):
    assert guard.execute(KEY.upper(), {"a": 1}, Proceed()).status_code == 201


def test_replay_returns_stored_response(guard):
    proceed = Proceed()
    first = guard.execute(KEY, {"a": 1}, proceed)
    second = guard.execute(KEY, {"a": 1}, proceed)

    assert proceed.calls == 1
    assert first.status_code == 201 and not first.replayed
    assert second.status_code == 200 and second.replayed
    assert second.body == first.body
    assert second.resource_id == "r-1"


def test_different_body_conflicts(guard):
    guard.execute(KEY, {"a": 1}, Proceed())
    with pytest.raises(IdempotencyConflict):
        guard.execute(KEY, {"a": 2}, Proceed())


def test_in_flight_reservation_times_out(guard, db, clock):
    now = clock()
    assert repository.reserve_idempotency_key(db, KEY, hash_request({"a": 1}), "reminder", now, now + timedelta(minutes=1))
    proceed = Proceed()
    with pytest.raises(IdempotencyConflict) as exc:
        guard.execute(KEY, {"a": 1}, proceed)
    assert "still being processed" in exc.value.detail
    assert proceed.calls == 0


def test_failure_releases_reservation(guard, db):
    with pytest.raises(ValidationError):
        guard.execute(KEY, {"a": 1}, Proceed(error=ValidationError("bad")))
    assert db.get(IdempotencyRecord, KEY, populate_existing=True) is None

    retry = Proceed()
    assert guard.execute(KEY, {"a": 1}, retry).status_code == 201
    assert retry.calls == 1


def test_non_success_outcome_is_not_stored(guard, db):
    guard.execute(KEY, {"a": 1}, Proceed(status_code=503))
    assert db.get(IdempotencyRecord, KEY, populate_existing=True) is None


def test_lost_reservation_race_replays_winner(guard, session_factory, clock, monkeypatch):
    real_reserve = repository.reserve_idempotency_key

    def reserve_after_rival(db, key, request_hash, resource_type, now, expires_at):
        # Another request inserts and completes first, so our insert hits the primary key
        rival = session_factory()
        try:
            real_reserve(rival, key, request_hash, resource_type, now, expires_at)
            repository.complete_idempotency_record(
                rival, key, "winner", 201, {"id": "winner"}, now + timedelta(hours=24), reserved_at=now
            )
        finally:
            rival.close()
        return real_reserve(db, key, request_hash, resource_type, now, expires_at)

    monkeypatch.setattr(repository, "reserve_idempotency_key", reserve_after_rival)
    proceed = Proceed()
    outcome = guard.execute(KEY, {"a": 1}, proceed)

    assert proceed.calls == 0
    assert outcome.replayed
    assert outcome.body == {"id": "winner"}


def test_expired_record_is_treated_as_absent(guard, clock):
    proceed = Proceed()
    guard.execute(KEY, {"a": 1}, proceed)
    clock.advance(hours=25)
    outcome = guard.execute(KEY, {"a": 2}, proceed)
    assert outcome.status_code == 201
    assert proceed.calls == 2


def test_purge_removes_only_expired(db, clock):
    now = clock()
    repository.reserve_idempotency_key(db, KEY, "h", "reminder", now, now + timedelta(hours=1))
    other = "9b2d4c1e-5f3a-4e8b-8c7d-1a2b3c4d5e6f"
    repository.reserve_idempotency_key(db, other, "h", "reminder", now, now + timedelta(hours=48))

    assert repository.purge_expired_idempotency_records(db, now + timedelta(hours=2)) == 1
    assert db.get(IdempotencyRecord, KEY, populate_existing=True) is None
    assert db.get(IdempotencyRecord, other, populate_existing=True) is not None


def test_late_completion_keeps_takeover_outcome(guard, db, session_factory, clock):
    other_db = session_factory()
    other = IdempotencyGuard(other_db, clock=clock, wait_seconds=0.05, poll_interval=0.01)

    def slow_first_request():
        # Runs past the reservation lifetime; a retry takes the key over meanwhile
        clock.advance(seconds=61)
        taken_over = other.execute(
            KEY, {"a": 1}, lambda: IdempotentResponse(201, {"id": "second"}, resource_id="second")
        )
        assert taken_over.status_code == 201 and not taken_over.replayed
        return IdempotentResponse(201, {"id": "first"}, resource_id="first")

    try:
        guard.execute(KEY, {"a": 1}, slow_first_request)
    finally:
        other_db.close()

    record = db.get(IdempotencyRecord, KEY, populate_existing=True)
    assert record.resource_id == "second"
    assert record.response_body == {"id": "second"}

    replay = guard.execute(KEY, {"a": 1}, Proceed())
    assert replay.replayed
    assert replay.resource_id == "second"


def test_release_leaves_a_newer_reservation_alone(db, clock):
    now = clock()
    repository.reserve_idempotency_key(db, KEY, "h", "reminder", now, now + timedelta(minutes=1))
    repository.release_idempotency_key(db, KEY, now - timedelta(minutes=2))
    assert db.get(IdempotencyRecord, KEY, populate_existing=True) is not None

    repository.release_idempotency_key(db, KEY, now)
    assert db.get(IdempotencyRecord, KEY, populate_existing=True) is None

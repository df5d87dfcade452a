"""
Idempotent creation guard.

A creation request carries a client-chosen ``Idempotency-Key``. The first
request under a key inserts a reservation row; the primary key on that row
decides which of several concurrent requests gets to run. Later requests
with the same canonical body receive the stored response, requests with a
different body are rejected.
"""
import hashlib
import json
import logging
import re
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from reminder_service.core.errors import IdempotencyConflict, InvalidIdempotencyKey
from reminder_service.utils.timezone import Clock, utc_now
from . import repository
from .metrics import idempotency_conflicts_total, idempotent_replays_total


logger = logging.getLogger(__name__)

UUID_V4_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

REPLAY_STATUS = 200


def is_valid_key(key: Optional[str]) -> bool:
    return bool(key) and UUID_V4_PATTERN.match(key) is not None


def canonical_json(body: Any) -> str:
    return json.dumps(body, sort_keys=True, separators=(",", ":"))


def hash_request(body: Any) -> str:
    return hashlib.sha256(canonical_json(body).encode("utf-8")).hexdigest()


@dataclass
class IdempotentResponse:
    status_code: int
    body: Any
    resource_id: Optional[str] = None
    replayed: bool = False

    @property
    def succeeded(self) -> bool:
        return 200 <= self.status_code < 300


class IdempotencyGuard:
    def __init__(
        self,
        db: Session,
        clock: Clock = utc_now,
        ttl: timedelta = timedelta(hours=24),
        reservation_ttl: timedelta = timedelta(seconds=60),
        wait_seconds: float = 5.0,
        poll_interval: float = 0.1,
        resource_type: str = "reminder",
    ):
        self.db = db
        self.clock = clock
        self.ttl = ttl
        self.reservation_ttl = reservation_ttl
        self.wait_seconds = wait_seconds
        self.poll_interval = poll_interval
        self.resource_type = resource_type

    def execute(
        self,
        key: str,
        body: Any,
        proceed: Callable[[], IdempotentResponse],
    ) -> IdempotentResponse:
        """Run ``proceed`` at most once per key, replaying its stored outcome afterwards."""
        if not is_valid_key(key):
            raise InvalidIdempotencyKey("Idempotency-Key must be a UUID v4")

        request_hash = hash_request(body)
        deadline = time.monotonic() + self.wait_seconds

        while True:
            now = self.clock()
            record = repository.find_idempotency_record(self.db, key, now)

            if record is None:
                if repository.reserve_idempotency_key(
                    self.db,
                    key,
                    request_hash,
                    self.resource_type,
                    now,
                    now + self.reservation_ttl,
                ):
                    return self._run(key, now, proceed)
                # Lost the insert race; the winner's row is visible now
                logger.debug("Idempotency key %s reserved concurrently, re-reading", key)
                continue

            if record.request_hash != request_hash:
                idempotency_conflicts_total.inc()
                raise IdempotencyConflict(
                    "Idempotency-Key was already used with a different request body"
                )

            if record.is_complete:
                idempotent_replays_total.inc()
                logger.info("Replaying stored response for idempotency key %s", key)
                return IdempotentResponse(
                    status_code=REPLAY_STATUS,
                    body=record.response_body,
                    resource_id=record.resource_id,
                    replayed=True,
                )

            if time.monotonic() >= deadline:
                idempotency_conflicts_total.inc()
                raise IdempotencyConflict("A request with this Idempotency-Key is still being processed")

            # End the read transaction so the next lookup sees the holder's commit
            self.db.rollback()
            time.sleep(self.poll_interval)

    def _run(self, key: str, reserved_at, proceed: Callable[[], IdempotentResponse]) -> IdempotentResponse:
        try:
            response = proceed()
        except Exception:
            self.db.rollback()
            repository.release_idempotency_key(self.db, key, reserved_at)
            raise

        if not response.succeeded:
            repository.release_idempotency_key(self.db, key, reserved_at)
            return response

        stored = repository.complete_idempotency_record(
            self.db,
            key,
            resource_id=response.resource_id,
            response_status=response.status_code,
            response_body=response.body,
            expires_at=self.clock() + self.ttl,
            reserved_at=reserved_at,
        )
        if not stored:
            # Reservation expired mid-request and another request now owns the key
            logger.warning("Idempotency reservation for %s expired before completion, outcome not stored", key)
        return response

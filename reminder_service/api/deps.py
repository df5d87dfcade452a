from datetime import timedelta
from typing import Any, Generator, Optional

from fastapi import Depends, Header, Request
from jose import jwt
from jose.exceptions import JOSEError
from sqlalchemy.orm import Session

from reminder_service.core.errors import ValidationError
from reminder_service.db.session import session_scope
from reminder_service.reminders.idempotency import IdempotencyGuard
from reminder_service.reminders.service import ReminderService


def get_db(request: Request) -> Generator[Session, None, None]:
    yield from session_scope(request.app.state.session_factory)


async def get_raw_json_body(request: Request) -> Any:
    """Body exactly as the client sent it, before the schema drops or coerces fields."""
    if not await request.body():
        return None
    return await request.json()


def get_current_user_id(authorization: Optional[str] = Header(None)) -> Optional[str]:
    """User id from the bearer token. The identity provider has already verified it."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise ValidationError("Authorization header must be a bearer token")
    try:
        claims = jwt.get_unverified_claims(token)
    except JOSEError:
        raise ValidationError("Bearer token could not be decoded")
    return claims.get("sub") or claims.get("userId")


def get_reminder_service(request: Request, db: Session = Depends(get_db)) -> ReminderService:
    state = request.app.state
    return ReminderService(
        db,
        publisher=state.publisher,
        background=state.background,
        clock=state.clock,
        orchestrator=state.orchestrator,
    )


def get_idempotency_guard(request: Request, db: Session = Depends(get_db)) -> IdempotencyGuard:
    state = request.app.state
    settings = state.settings
    return IdempotencyGuard(
        db,
        clock=state.clock,
        ttl=timedelta(hours=settings.IDEMPOTENCY_TTL_HOURS),
        reservation_ttl=timedelta(seconds=settings.IDEMPOTENCY_RESERVATION_TTL_SECONDS),
        wait_seconds=settings.IDEMPOTENCY_WAIT_SECONDS,
        poll_interval=settings.IDEMPOTENCY_POLL_INTERVAL_SECONDS,
    )

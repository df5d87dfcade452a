from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, Response
from fastapi.responses import JSONResponse

from reminder_service.api.deps import (
    get_current_user_id,
    get_idempotency_guard,
    get_raw_json_body,
    get_reminder_service,
)
from reminder_service.core.errors import ValidationError
from .idempotency import IdempotencyGuard, IdempotentResponse
from .models import ReminderStatus
from .schemas import ReminderCreate, ReminderPage, ReminderRead, ReminderUpdate
from .service import DEFAULT_PAGE_SIZE, ReminderService


router = APIRouter()


@router.post("", status_code=201, response_model=ReminderRead)
def create_reminder_endpoint(
    payload: ReminderCreate,
    raw_body: Any = Depends(get_raw_json_body),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    service: ReminderService = Depends(get_reminder_service),
    guard: IdempotencyGuard = Depends(get_idempotency_guard),
):
    if not idempotency_key:
        raise ValidationError(
            "Idempotency-Key header is required",
            errors=[{"field": "Idempotency-Key", "message": "header is required", "code": "MISSING_HEADER"}],
        )

    def proceed() -> IdempotentResponse:
        read = service.create(payload)
        return IdempotentResponse(status_code=201, body=read.to_json(), resource_id=read.id)

    outcome = guard.execute(idempotency_key, raw_body, proceed)
    headers = {"Location": f"/v1/reminders/{outcome.resource_id}"} if outcome.resource_id else None
    return JSONResponse(status_code=outcome.status_code, content=outcome.body, headers=headers)


@router.get("", response_model=ReminderPage)
def list_reminders_endpoint(
    userId: Optional[str] = None,
    status: Optional[ReminderStatus] = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    service: ReminderService = Depends(get_reminder_service),
    current_user_id: Optional[str] = Depends(get_current_user_id),
):
    return service.list(user_id=userId or current_user_id, status=status, page=page, limit=limit)


@router.get("/{reminder_id}", response_model=ReminderRead)
def get_reminder_endpoint(
    reminder_id: str,
    service: ReminderService = Depends(get_reminder_service),
    current_user_id: Optional[str] = Depends(get_current_user_id),
):
    return service.get(reminder_id, user_id=current_user_id)


@router.patch("/{reminder_id}", response_model=ReminderRead)
def update_reminder_endpoint(
    reminder_id: str,
    payload: ReminderUpdate,
    service: ReminderService = Depends(get_reminder_service),
    current_user_id: Optional[str] = Depends(get_current_user_id),
):
    """Partial update; a status change must follow the reminder lifecycle."""
    return service.update(reminder_id, payload, user_id=current_user_id)


@router.delete("/{reminder_id}", status_code=204)
def delete_reminder_endpoint(
    reminder_id: str,
    service: ReminderService = Depends(get_reminder_service),
    current_user_id: Optional[str] = Depends(get_current_user_id),
):
    """Soft delete: moves the reminder to cancelled."""
    service.delete(reminder_id, user_id=current_user_id)
    return Response(status_code=204)

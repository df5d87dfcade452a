"""
Request and response schemas for the reminders API (camelCase on the wire)
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from reminder_service.utils.timezone import to_utc_aware
from .models import Reminder, ReminderSource, ReminderStatus


class ReminderCreate(BaseModel):
    """Schema for creating a reminder"""
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId", min_length=1)
    title: str
    due_at: datetime = Field(..., alias="dueAt")
    source: ReminderSource = ReminderSource.MANUAL
    advance_minutes: int = Field(default=15, alias="advanceMinutes")
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("due_at")
    @classmethod
    def _normalize_due_at(cls, v: datetime) -> datetime:
        return to_utc_aware(v)


class ReminderUpdate(BaseModel):
    """Schema for partially updating a reminder; unset fields are left alone"""
    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = None
    due_at: Optional[datetime] = Field(default=None, alias="dueAt")
    status: Optional[ReminderStatus] = None
    advance_minutes: Optional[int] = Field(default=None, alias="advanceMinutes")
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("due_at")
    @classmethod
    def _normalize_due_at(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_utc_aware(v)

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude_none=True)


class ReminderRead(BaseModel):
    """Schema for reading a reminder"""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    user_id: str = Field(..., alias="userId")
    title: str
    due_at: datetime = Field(..., alias="dueAt")
    status: ReminderStatus
    source: ReminderSource
    advance_minutes: int = Field(..., alias="advanceMinutes")
    metadata: Dict[str, Any]
    notified_at: Optional[datetime] = Field(default=None, alias="notifiedAt")
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")

    @field_validator("due_at", "notified_at", "created_at", "updated_at")
    @classmethod
    def _utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_utc_aware(v)

    @classmethod
    def from_model(cls, r: Reminder) -> "ReminderRead":
        return cls(
            id=str(r.id),
            user_id=r.user_id,
            title=r.title,
            due_at=r.due_at,
            status=r.status,
            source=r.source,
            advance_minutes=r.advance_minutes,
            metadata=r.meta or {},
            notified_at=r.notified_at,
            created_at=r.created_at,
            updated_at=r.updated_at,
        )

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int = Field(..., alias="totalPages")

    model_config = ConfigDict(populate_by_name=True)


class ReminderPage(BaseModel):
    """Paginated list response"""
    data: List[ReminderRead]
    pagination: Pagination

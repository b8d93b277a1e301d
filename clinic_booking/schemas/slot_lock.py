"""Pydantic schemas for slot holds."""

from datetime import datetime
from uuid import UUID
from pydantic import BaseModel, field_validator
from typing import Optional
from clinic_booking.services.clinic_time import to_naive_utc


class SlotLockRequest(BaseModel):
    """Hold a provider's slot while a booking form is open."""
    tenant_id: str
    session_id: str
    provider_id: Optional[UUID] = None
    user_id: Optional[UUID] = None
    patient_id: Optional[UUID] = None
    location_id: Optional[UUID] = None
    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def normalise(cls, value: datetime) -> datetime:
        return to_naive_utc(value)


class SlotLockOut(BaseModel):
    session_id: str
    keys: list[str]
    expires_at: datetime


class SlotLockStatus(BaseModel):
    is_locked: bool
    held_by_you: bool
    lock_count: int
    expires_at: Optional[datetime] = None

"""Pydantic schemas for opening hours, availability and slot checks."""

from datetime import date, datetime
from uuid import UUID
from pydantic import BaseModel, field_validator
from typing import Optional
from clinic_booking.schemas.governance import ControlPlaneContext
from clinic_booking.services.clinic_time import to_naive_utc


class OpeningHoursCheck(BaseModel):
    tenant_id: str
    clinic_id: UUID
    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def normalise(cls, value: datetime) -> datetime:
        return to_naive_utc(value)


class OpeningHoursDecisionOut(BaseModel):
    within_hours: bool
    reason: Optional[str] = None
    source: str
    timezone_degraded: bool = False


class AvailabilityCheck(BaseModel):
    tenant_id: str
    provider_id: UUID
    at: datetime
    location_id: Optional[UUID] = None

    @field_validator("at")
    @classmethod
    def normalise(cls, value: datetime) -> datetime:
        return to_naive_utc(value)


class AvailabilityDecisionOut(BaseModel):
    available: bool
    reason: Optional[str] = None
    source: str
    timezone_degraded: bool = False


class SlotOut(BaseModel):
    start: datetime
    available: bool


class OpeningHoursDaySet(BaseModel):
    """Schema for setting the recurring hours of one weekday."""
    tenant_id: str
    clinic_id: Optional[UUID] = None  # None sets the company-wide default
    day_of_week: str  # "monday" .. "sunday"
    start_time: str  # "08:00"
    end_time: str  # "18:00"
    is_closed: bool = False
    control_plane_context: Optional[ControlPlaneContext] = None


class OpeningHoursOverrideSet(BaseModel):
    tenant_id: str
    clinic_id: Optional[UUID] = None
    override_date: date
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    is_closed: bool = False
    control_plane_context: Optional[ControlPlaneContext] = None


class OpeningHoursOverrideRemove(BaseModel):
    tenant_id: str
    clinic_id: Optional[UUID] = None
    override_date: date
    control_plane_context: Optional[ControlPlaneContext] = None


class OpeningHoursOut(BaseModel):
    id: UUID
    clinic_id: Optional[UUID] = None
    day_of_week: str
    is_recurring: bool
    override_date: Optional[date] = None
    start_time: str
    end_time: str
    is_closed: bool

    class Config:
        from_attributes = True


class EffectiveOpeningHoursOut(BaseModel):
    recurring: list[OpeningHoursOut]
    overrides: list[OpeningHoursOut]
    source: str


class RecurringAvailabilitySet(BaseModel):
    tenant_id: str
    provider_id: UUID
    location_id: Optional[UUID] = None  # None applies at every location
    day_of_week: str
    start_time: str
    end_time: str
    control_plane_context: Optional[ControlPlaneContext] = None


class AvailabilityOverrideSet(BaseModel):
    """Omit the times to mark the provider unavailable for the day."""
    tenant_id: str
    provider_id: UUID
    location_id: Optional[UUID] = None
    override_date: date
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    control_plane_context: Optional[ControlPlaneContext] = None


class ProviderAvailabilityOut(BaseModel):
    id: UUID
    provider_id: UUID
    location_id: Optional[UUID] = None
    day_of_week: str
    is_recurring: bool
    override_date: Optional[datetime] = None
    start_time: str
    end_time: str

    class Config:
        from_attributes = True

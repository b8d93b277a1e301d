"""Pydantic schemas for Appointments."""

from datetime import datetime
from uuid import UUID
from pydantic import BaseModel, field_validator
from typing import Optional
from clinic_booking.models.appointment import AppointmentStatus, AppointmentType
from clinic_booking.schemas.governance import ControlPlaneContext
from clinic_booking.services.clinic_time import to_naive_utc


class AppointmentCreate(BaseModel):
    """Schema for booking an appointment."""
    tenant_id: str
    patient_id: UUID
    user_id: UUID  # whose calendar the appointment sits on
    provider_id: Optional[UUID] = None
    location_id: Optional[UUID] = None
    clinic_id: Optional[UUID] = None
    scheduled_at: datetime
    duration_minutes: int
    type: AppointmentType = AppointmentType.CONSULTATION
    notes: Optional[str] = None
    created_by: UUID
    session_id: Optional[str] = None  # reuses slot locks held by this booking session
    # Optional here so a missing context is refused by the policy gate
    control_plane_context: Optional[ControlPlaneContext] = None

    @field_validator("scheduled_at")
    @classmethod
    def normalise_scheduled_at(cls, value: datetime) -> datetime:
        return to_naive_utc(value)


class AppointmentUpdate(BaseModel):
    """Partial update; only the fields sent are re-validated."""
    scheduled_at: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    provider_id: Optional[UUID] = None
    location_id: Optional[UUID] = None
    clinic_id: Optional[UUID] = None
    type: Optional[AppointmentType] = None
    status: Optional[AppointmentStatus] = None
    notes: Optional[str] = None
    last_modified_by: Optional[UUID] = None
    session_id: Optional[str] = None
    control_plane_context: Optional[ControlPlaneContext] = None

    @field_validator("scheduled_at")
    @classmethod
    def normalise_scheduled_at(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value) if value is not None else None


class AppointmentStatusUpdate(BaseModel):
    status: AppointmentStatus
    last_modified_by: Optional[UUID] = None
    control_plane_context: Optional[ControlPlaneContext] = None


class AppointmentDelete(BaseModel):
    deleted_by: Optional[UUID] = None
    control_plane_context: Optional[ControlPlaneContext] = None


class AppointmentOut(BaseModel):
    """Schema for returning appointment details."""
    id: UUID
    tenant_id: str
    patient_id: UUID
    user_id: UUID
    provider_id: Optional[UUID] = None
    location_id: Optional[UUID] = None
    clinic_id: Optional[UUID] = None
    scheduled_at: datetime
    duration_minutes: int
    type: AppointmentType
    status: AppointmentStatus
    notes: Optional[str] = None
    created_by: Optional[UUID] = None
    last_modified_by: Optional[UUID] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

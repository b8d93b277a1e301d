"""Appointment overlap detection.

Two appointments overlap iff ``a.start < b.end and a.end > b.start``.
Back-to-back appointments therefore never conflict. Cancelled
appointments never conflict with anything.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_booking.core.config import settings
from clinic_booking.models.appointment import Appointment, AppointmentStatus
from clinic_booking.services.clinic_time import TimeInterval

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConflictScope:
    """Whose calendar to search.

    Exactly one of provider, user or patient may be set, or none of them
    with a location. A location alongside a provider or user narrows that
    calendar to the location.
    """
    provider_id: Optional[UUID] = None
    user_id: Optional[UUID] = None
    patient_id: Optional[UUID] = None
    location_id: Optional[UUID] = None

    def __post_init__(self):
        owners = [v for v in (self.provider_id, self.user_id, self.patient_id) if v is not None]
        if len(owners) > 1:
            raise ValueError("a conflict scope names at most one of provider, user or patient")
        if not owners and self.location_id is None:
            raise ValueError("a conflict scope needs a provider, user, patient or location")
        if self.patient_id is not None and self.location_id is not None:
            raise ValueError("patient scope cannot be narrowed by location")

    @property
    def kind(self) -> str:
        if self.provider_id is not None:
            return "provider"
        if self.user_id is not None:
            return "user"
        if self.patient_id is not None:
            return "patient"
        return "location"

    def filters(self) -> list:
        clauses = []
        if self.provider_id is not None:
            clauses.append(Appointment.provider_id == self.provider_id)
        if self.user_id is not None:
            clauses.append(Appointment.user_id == self.user_id)
        if self.patient_id is not None:
            clauses.append(Appointment.patient_id == self.patient_id)
        if self.location_id is not None:
            clauses.append(Appointment.location_id == self.location_id)
        return clauses


def booking_scopes(
    provider_id: Optional[UUID],
    user_id: Optional[UUID],
    location_id: Optional[UUID],
    patient_id: Optional[UUID] = None,
) -> list[ConflictScope]:
    """Calendars a booking must be free in, in the order they are checked.

    The provider's calendar, or the owning user's when there is no provider,
    then the location itself when locations are exclusive, then the patient.
    """
    scopes = []
    if provider_id is not None:
        scopes.append(ConflictScope(provider_id=provider_id, location_id=location_id))
    elif user_id is not None:
        scopes.append(ConflictScope(user_id=user_id, location_id=location_id))
    if location_id is not None and settings.LOCATION_EXCLUSIVE_BOOKING:
        scopes.append(ConflictScope(location_id=location_id))
    if patient_id is not None:
        scopes.append(ConflictScope(patient_id=patient_id))
    return scopes


def appointment_interval(appointment: Appointment) -> TimeInterval:
    return TimeInterval.from_duration(appointment.scheduled_at, appointment.duration_minutes)


def filter_overlaps(
    candidate: TimeInterval,
    appointments: Iterable[Appointment],
    exclude_id: Optional[UUID] = None,
) -> list[Appointment]:
    """Appointments from ``appointments`` that overlap ``candidate``."""
    overlapping = []
    for appointment in appointments:
        if exclude_id is not None and appointment.id == exclude_id:
            continue
        if appointment.status == AppointmentStatus.CANCELLED:
            continue
        if appointment_interval(appointment).overlaps(candidate):
            overlapping.append(appointment)
    return overlapping


async def fetch_scope_appointments(
    db: AsyncSession,
    scope: ConflictScope,
    tenant_id: str,
    window: TimeInterval,
) -> list[Appointment]:
    """Non-cancelled appointments in a scope starting inside ``window``."""
    result = await db.execute(
        select(Appointment).where(
            and_(
                Appointment.tenant_id == tenant_id,
                Appointment.status != AppointmentStatus.CANCELLED,
                Appointment.scheduled_at >= window.start,
                Appointment.scheduled_at < window.end,
                *scope.filters(),
            )
        ).order_by(Appointment.scheduled_at)
    )
    return list(result.scalars().all())


async def find_overlaps(
    db: AsyncSession,
    candidate: TimeInterval,
    scope: ConflictScope,
    tenant_id: str,
    exclude_id: Optional[UUID] = None,
    search_window_hours: Optional[int] = None,
) -> list[Appointment]:
    """Existing appointments in ``scope`` that overlap ``candidate``, earliest first.

    Only appointments starting within the search window around the
    candidate are considered; the window must be wider than the longest
    allowed appointment.
    """
    hours = search_window_hours if search_window_hours is not None else settings.CONFLICT_SEARCH_WINDOW_HOURS
    window = TimeInterval(candidate.start - timedelta(hours=hours), candidate.end + timedelta(hours=hours))
    nearby = await fetch_scope_appointments(db, scope, tenant_id, window)
    overlapping = filter_overlaps(candidate, nearby, exclude_id=exclude_id)
    if overlapping:
        logger.info(
            "Found %d overlapping appointment(s): scope=%s tenant=%s start=%s",
            len(overlapping),
            scope.kind,
            tenant_id,
            candidate.start,
        )
    return overlapping

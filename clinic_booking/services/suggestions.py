"""Alternative slot suggestions after a provider or location conflict."""

import logging
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from clinic_booking.core.config import settings
from clinic_booking.models.appointment import Appointment
from clinic_booking.services.availability import check_provider_availability, get_recurring_window
from clinic_booking.services.clinic_time import TimeInterval, utcnow
from clinic_booking.services.conflicts import (
    ConflictScope,
    booking_scopes,
    fetch_scope_appointments,
    filter_overlaps,
    find_overlaps,
)

logger = logging.getLogger(__name__)

# Fewer suggestions than this triggers the recurring-window fallback
MIN_SUGGESTIONS = 2


def candidate_starts(conflict: TimeInterval, duration_minutes: int) -> list[datetime]:
    """Candidate start times around a conflicting appointment, in preference order."""
    duration = timedelta(minutes=duration_minutes)
    return [
        conflict.start - duration - timedelta(minutes=30),
        conflict.start - duration,
        conflict.end,
        conflict.end + timedelta(minutes=60),
    ]


async def _prefetch(
    db: AsyncSession,
    scopes: list[ConflictScope],
    tenant_id: str,
    window: TimeInterval,
) -> dict[ConflictScope, list[Appointment]]:
    return {scope: await fetch_scope_appointments(db, scope, tenant_id, window) for scope in scopes}


def _is_free(
    candidate: TimeInterval,
    booked: dict[ConflictScope, list[Appointment]],
    exclude_id: Optional[UUID],
) -> bool:
    return not any(filter_overlaps(candidate, appointments, exclude_id) for appointments in booked.values())


async def suggest_slots(
    db: AsyncSession,
    conflict: TimeInterval,
    duration_minutes: int,
    provider_id: Optional[UUID],
    location_id: Optional[UUID],
    tenant_id: str,
    max_suggestions: Optional[int] = None,
    exclude_id: Optional[UUID] = None,
    patient_id: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> list[datetime]:
    """Up to ``max_suggestions`` start times near ``conflict`` that are free and bookable.

    A suggestion never lies in the past, never overlaps a non-cancelled
    appointment in the provider, location or patient calendars, and falls
    inside the provider's availability at its start.
    """
    if provider_id is None:
        return []

    limit = max_suggestions if max_suggestions is not None else settings.MAX_SUGGESTIONS
    now = now or utcnow()
    duration = timedelta(minutes=duration_minutes)
    scopes = booking_scopes(provider_id, None, location_id, patient_id)

    candidates = candidate_starts(conflict, duration_minutes)
    spread = timedelta(hours=settings.SUGGESTION_SEARCH_WINDOW_HOURS)
    # Widen the window so appointments reaching into any candidate are seen
    lookback = timedelta(minutes=settings.MAX_APPOINTMENT_DURATION_MINUTES)
    window = TimeInterval(
        min(conflict.start - spread, min(candidates) - lookback),
        max(conflict.end + spread, max(candidates) + duration),
    )
    booked = await _prefetch(db, scopes, tenant_id, window)

    suggestions: list[datetime] = []
    for start in candidates:
        if len(suggestions) >= limit:
            break
        if start <= now or start in suggestions:
            continue
        if not _is_free(TimeInterval(start, start + duration), booked, exclude_id):
            continue
        decision = await check_provider_availability(db, provider_id, start, location_id, tenant_id)
        if decision.available:
            suggestions.append(start)

    if len(suggestions) < MIN_SUGGESTIONS and len(suggestions) < limit:
        fallback = await get_recurring_window(db, provider_id, conflict.start, location_id, tenant_id)
        if fallback is not None and fallback > now and fallback not in suggestions:
            interval = TimeInterval(fallback, fallback + duration)
            clashes = False
            for scope in scopes:
                if await find_overlaps(db, interval, scope, tenant_id, exclude_id=exclude_id):
                    clashes = True
                    break
            if not clashes:
                decision = await check_provider_availability(db, provider_id, fallback, location_id, tenant_id)
                if decision.available:
                    suggestions.append(fallback)

    logger.info(
        "Suggested %d alternative slot(s) for provider=%s around %s",
        len(suggestions),
        provider_id,
        conflict.start,
    )
    return suggestions

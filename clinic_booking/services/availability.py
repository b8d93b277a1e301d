"""Provider availability resolution.

An override for the local day beats the recurring weekday entry. Having
neither means the provider is unavailable. Windows are half-open, so an
appointment may start at the window start but not at the window end.
"""

import logging
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from typing import Callable, Optional, Sequence
from uuid import UUID

from sqlalchemy import select, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_booking.core.exceptions import NotFoundError, ValidationError
from clinic_booking.models.appointment import Appointment, AppointmentStatus
from clinic_booking.models.availability import ProviderAvailability
from clinic_booking.models.clinic import Location
from clinic_booking.models.provider import Provider
from clinic_booking.services.clinic_time import (
    WEEKDAYS,
    LocalMoment,
    TimeInterval,
    local_moment,
    local_time_to_utc,
    parse_clock,
    start_of_day,
    utcnow,
)
from clinic_booking.services.opening_hours import get_tenant_timezone

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AvailabilityDecision:
    available: bool
    reason: Optional[str] = None
    source: str = "none"
    timezone_degraded: bool = False


@dataclass(frozen=True)
class AvailabilityProbe:
    moment: LocalMoment
    day_start: datetime  # UTC instant of local midnight
    location_id: Optional[UUID] = None


NO_AVAILABILITY = AvailabilityDecision(
    available=False,
    reason="No recurring availability set for this day",
    source="none",
)


def match_location(entries: Sequence[ProviderAvailability], location_id: Optional[UUID]) -> list[ProviderAvailability]:
    """Entries for the requested location, else the location-agnostic ones."""
    if location_id is None:
        return list(entries)
    exact = [e for e in entries if e.location_id == location_id]
    if exact:
        return exact
    return [e for e in entries if e.location_id is None]


def window_contains(entry: ProviderAvailability, minutes: int) -> bool:
    return parse_clock(entry.start_time) <= minutes < parse_clock(entry.end_time)


# ============================================================================
# PRECEDENCE CHAIN
# ============================================================================

def override_window(entries, probe):
    overrides = match_location(
        [e for e in entries if not e.is_recurring and e.override_date == probe.day_start],
        probe.location_id,
    )
    if not overrides:
        return None
    if any(e.is_blocked for e in overrides):
        return AvailabilityDecision(False, "Override marks provider as unavailable", "override")
    if any(window_contains(e, probe.moment.minutes) for e in overrides):
        return AvailabilityDecision(True, None, "override")
    return AvailabilityDecision(False, "Outside override availability window", "override")


def recurring_window(entries, probe):
    recurring = match_location(
        [e for e in entries if e.is_recurring and e.day_of_week == probe.moment.weekday],
        probe.location_id,
    )
    if not recurring:
        return None
    if any(window_contains(e, probe.moment.minutes) for e in recurring):
        return AvailabilityDecision(True, None, "recurring")
    return AvailabilityDecision(False, "Outside recurring availability window", "recurring")


Strategy = Callable[[Sequence[ProviderAvailability], AvailabilityProbe], Optional[AvailabilityDecision]]

PRECEDENCE: tuple[Strategy, ...] = (override_window, recurring_window)


def resolve_availability(entries: Sequence[ProviderAvailability], probe: AvailabilityProbe) -> AvailabilityDecision:
    for strategy in PRECEDENCE:
        decision = strategy(entries, probe)
        if decision is not None:
            return replace(decision, timezone_degraded=probe.moment.degraded)
    return replace(NO_AVAILABILITY, timezone_degraded=probe.moment.degraded)


# ============================================================================
# DATABASE ACCESS
# ============================================================================

async def availability_timezone(db: AsyncSession, tenant_id: str, location_id: Optional[UUID]) -> Optional[str]:
    """Location timezone, else the tenant's."""
    if location_id is not None:
        result = await db.execute(
            select(Location.timezone).where(and_(Location.id == location_id, Location.tenant_id == tenant_id))
        )
        tz_name = result.scalar_one_or_none()
        if tz_name:
            return tz_name
    return await get_tenant_timezone(db, tenant_id)


async def get_entries_for_day(
    db: AsyncSession,
    provider_id: UUID,
    tenant_id: str,
    weekday: str,
    day_start: datetime,
) -> list[ProviderAvailability]:
    result = await db.execute(
        select(ProviderAvailability).where(
            and_(
                ProviderAvailability.tenant_id == tenant_id,
                ProviderAvailability.provider_id == provider_id,
                or_(
                    and_(
                        ProviderAvailability.is_recurring.is_(True),
                        ProviderAvailability.day_of_week == weekday,
                    ),
                    and_(
                        ProviderAvailability.is_recurring.is_(False),
                        ProviderAvailability.override_date == day_start,
                    ),
                ),
            )
        ).order_by(ProviderAvailability.start_time)
    )
    return list(result.scalars().all())


async def _probe(db: AsyncSession, instant: datetime, location_id: Optional[UUID], tenant_id: str) -> AvailabilityProbe:
    tz_name = await availability_timezone(db, tenant_id, location_id)
    return AvailabilityProbe(
        moment=local_moment(instant, tz_name),
        day_start=start_of_day(instant, tz_name),
        location_id=location_id,
    )


async def check_provider_availability(
    db: AsyncSession,
    provider_id: UUID,
    instant: datetime,
    location_id: Optional[UUID],
    tenant_id: str,
) -> AvailabilityDecision:
    """Is the provider available at ``instant``?"""
    probe = await _probe(db, instant, location_id, tenant_id)
    entries = await get_entries_for_day(db, provider_id, tenant_id, probe.moment.weekday, probe.day_start)
    decision = resolve_availability(entries, probe)
    logger.debug(
        "Availability check: provider=%s at=%s source=%s available=%s",
        provider_id,
        instant,
        decision.source,
        decision.available,
    )
    return decision


async def get_recurring_window(
    db: AsyncSession,
    provider_id: UUID,
    instant: datetime,
    location_id: Optional[UUID],
    tenant_id: str,
) -> Optional[datetime]:
    """UTC instant at which the provider's recurring window opens on the local day of ``instant``."""
    tz_name = await availability_timezone(db, tenant_id, location_id)
    moment = local_moment(instant, tz_name)
    entries = await get_entries_for_day(db, provider_id, tenant_id, moment.weekday, start_of_day(instant, tz_name))
    recurring = match_location([e for e in entries if e.is_recurring], location_id)
    if not recurring:
        return None
    earliest = min(recurring, key=lambda e: parse_clock(e.start_time))
    return local_time_to_utc(moment.date, earliest.start_time, tz_name)


# ============================================================================
# SLOT LISTING
# ============================================================================

def _day_windows(entries: Sequence[ProviderAvailability], weekday: str, day_start: datetime, location_id) -> list[tuple[str, str]]:
    overrides = match_location(
        [e for e in entries if not e.is_recurring and e.override_date == day_start],
        location_id,
    )
    if overrides:
        if any(e.is_blocked for e in overrides):
            return []
        return [(e.start_time, e.end_time) for e in overrides]
    recurring = match_location([e for e in entries if e.is_recurring and e.day_of_week == weekday], location_id)
    return [(e.start_time, e.end_time) for e in recurring]


async def list_available_slots(
    db: AsyncSession,
    provider_id: UUID,
    start: datetime,
    end: datetime,
    tenant_id: str,
    slot_minutes: int = 30,
    location_id: Optional[UUID] = None,
) -> list[dict]:
    """Fixed-step slot grid for a provider between two instants.

    Each slot is ``{"start": datetime, "available": bool}``; a slot is taken
    when it overlaps a non-cancelled appointment of the provider.
    """
    if slot_minutes <= 0:
        raise ValidationError("Slot duration must be positive", field="slot_minutes")
    if end <= start:
        raise ValidationError("End must be after start", field="end")

    tz_name = await availability_timezone(db, tenant_id, location_id)

    result = await db.execute(
        select(ProviderAvailability).where(
            and_(
                ProviderAvailability.tenant_id == tenant_id,
                ProviderAvailability.provider_id == provider_id,
            )
        )
    )
    entries = list(result.scalars().all())

    result = await db.execute(
        select(Appointment).where(
            and_(
                Appointment.tenant_id == tenant_id,
                Appointment.provider_id == provider_id,
                Appointment.status != AppointmentStatus.CANCELLED,
                Appointment.scheduled_at < end,
                Appointment.scheduled_at >= start - timedelta(days=1),
            )
        )
    )
    booked = [TimeInterval.from_duration(a.scheduled_at, a.duration_minutes) for a in result.scalars().all()]

    slots = []
    current_day = local_moment(start, tz_name).date
    last_day = local_moment(end, tz_name).date
    while current_day <= last_day:
        day_start = local_time_to_utc(current_day, "00:00", tz_name)
        weekday = WEEKDAYS[current_day.weekday()]
        for window_start, window_end in _day_windows(entries, weekday, day_start, location_id):
            minute = parse_clock(window_start)
            closes = parse_clock(window_end)
            while minute + slot_minutes <= closes:
                slot_start = local_time_to_utc(current_day, f"{minute // 60:02d}:{minute % 60:02d}", tz_name)
                minute += slot_minutes
                if slot_start < start or slot_start >= end:
                    continue
                slot = TimeInterval.from_duration(slot_start, slot_minutes)
                slots.append({
                    "start": slot_start,
                    "available": not any(slot.overlaps(b) for b in booked),
                })
        current_day += timedelta(days=1)

    slots.sort(key=lambda s: s["start"])
    return slots


# ============================================================================
# ADMINISTRATION
# ============================================================================

async def _require_provider_and_location(db: AsyncSession, tenant_id: str, provider_id: UUID, location_id: Optional[UUID]):
    result = await db.execute(
        select(Provider).where(and_(Provider.id == provider_id, Provider.tenant_id == tenant_id))
    )
    if not result.scalar_one_or_none():
        raise NotFoundError("Provider not found", field="provider_id")
    if location_id is not None:
        result = await db.execute(
            select(Location).where(and_(Location.id == location_id, Location.tenant_id == tenant_id))
        )
        if not result.scalar_one_or_none():
            raise NotFoundError("Location not found", field="location_id")


def _check_window(start_time: str, end_time: str, allow_blocked: bool = False):
    try:
        opens = parse_clock(start_time)
        closes = parse_clock(end_time)
    except ValueError as e:
        raise ValidationError(str(e), field="start_time")
    if allow_blocked and opens == 0 and closes == 0:
        return
    if closes <= opens:
        raise ValidationError("End time must be after start time", field="end_time")


async def set_recurring_availability(
    db: AsyncSession,
    tenant_id: str,
    provider_id: UUID,
    day_of_week: str,
    start_time: str,
    end_time: str,
    location_id: Optional[UUID] = None,
) -> ProviderAvailability:
    """Create or replace the provider's recurring window for one weekday."""
    day = day_of_week.lower()
    if day not in WEEKDAYS:
        raise ValidationError(f"Invalid day of week: {day_of_week}", field="day_of_week")
    _check_window(start_time, end_time)
    await _require_provider_and_location(db, tenant_id, provider_id, location_id)

    location_filter = (
        ProviderAvailability.location_id == location_id
        if location_id else ProviderAvailability.location_id.is_(None)
    )
    result = await db.execute(
        select(ProviderAvailability).where(
            and_(
                ProviderAvailability.tenant_id == tenant_id,
                ProviderAvailability.provider_id == provider_id,
                ProviderAvailability.is_recurring.is_(True),
                ProviderAvailability.day_of_week == day,
                location_filter,
            )
        )
    )
    entry = result.scalars().first()
    if entry:
        entry.start_time = start_time
        entry.end_time = end_time
        entry.updated_at = datetime.utcnow()
    else:
        entry = ProviderAvailability(
            tenant_id=tenant_id,
            provider_id=provider_id,
            location_id=location_id,
            day_of_week=day,
            is_recurring=True,
            start_time=start_time,
            end_time=end_time,
        )
        db.add(entry)

    await db.commit()
    await db.refresh(entry)
    logger.info(
        "Recurring availability set: provider=%s day=%s %s-%s location=%s",
        provider_id, day, start_time, end_time, location_id,
    )
    return entry


async def add_availability_override(
    db: AsyncSession,
    tenant_id: str,
    provider_id: UUID,
    override_date: date,
    start_time: Optional[str] = None,
    end_time: Optional[str] = None,
    location_id: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> ProviderAvailability:
    """Replace the provider's hours for one local date.

    Leaving out the times marks the provider unavailable for the day.
    """
    if not start_time or not end_time:
        start_time, end_time = "00:00", "00:00"
    _check_window(start_time, end_time, allow_blocked=True)
    await _require_provider_and_location(db, tenant_id, provider_id, location_id)

    tz_name = await availability_timezone(db, tenant_id, location_id)
    today = local_moment(now or utcnow(), tz_name).date
    if override_date < today:
        raise ValidationError("Override date cannot be in the past", field="override_date")
    day_start = local_time_to_utc(override_date, "00:00", tz_name)

    location_filter = (
        ProviderAvailability.location_id == location_id
        if location_id else ProviderAvailability.location_id.is_(None)
    )
    result = await db.execute(
        select(ProviderAvailability).where(
            and_(
                ProviderAvailability.tenant_id == tenant_id,
                ProviderAvailability.provider_id == provider_id,
                ProviderAvailability.is_recurring.is_(False),
                ProviderAvailability.override_date == day_start,
                location_filter,
            )
        )
    )
    entry = result.scalars().first()
    if entry:
        entry.start_time = start_time
        entry.end_time = end_time
        entry.updated_at = datetime.utcnow()
    else:
        entry = ProviderAvailability(
            tenant_id=tenant_id,
            provider_id=provider_id,
            location_id=location_id,
            day_of_week=WEEKDAYS[override_date.weekday()],
            is_recurring=False,
            override_date=day_start,
            start_time=start_time,
            end_time=end_time,
        )
        db.add(entry)

    await db.commit()
    await db.refresh(entry)
    logger.info(
        "Availability override set: provider=%s date=%s %s-%s location=%s",
        provider_id, override_date, start_time, end_time, location_id,
    )
    return entry

"""Opening hours resolution.

Precedence for a given interval, first match wins:

1. clinic override for the local date
2. company override for the local date
3. clinic recurring hours for the local weekday
4. company recurring hours for the local weekday
5. nothing configured: unrestricted
"""

import logging
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Callable, Optional, Sequence
from uuid import UUID

from sqlalchemy import select, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_booking.core.exceptions import NotFoundError, ValidationError
from clinic_booking.models.clinic import Clinic
from clinic_booking.models.opening_hours import OpeningHours
from clinic_booking.models.tenant import Tenant
from clinic_booking.services.clinic_time import (
    WEEKDAYS,
    LocalWindow,
    TimeInterval,
    local_window,
    parse_clock,
    format_clock,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OpeningHoursDecision:
    within_hours: bool
    reason: Optional[str] = None
    source: str = "unrestricted"
    timezone_degraded: bool = False


UNRESTRICTED = OpeningHoursDecision(within_hours=True, source="unrestricted")


# ============================================================================
# PRECEDENCE CHAIN
# ============================================================================

def _decide(entry: OpeningHours, window: LocalWindow, source: str, closed_reason: str) -> OpeningHoursDecision:
    if entry.is_closed:
        return OpeningHoursDecision(within_hours=False, reason=closed_reason, source=source)

    opens = parse_clock(entry.start_time)
    closes = parse_clock(entry.end_time)

    if window.start_minutes < opens:
        return OpeningHoursDecision(
            within_hours=False,
            reason=f"Appointment starts before opening hours ({format_clock(opens)})",
            source=source,
        )
    if window.end_minutes > closes:
        return OpeningHoursDecision(
            within_hours=False,
            reason=f"Appointment ends after closing hours ({format_clock(closes)})",
            source=source,
        )
    return OpeningHoursDecision(within_hours=True, source=source)


def _override_for(entries: Sequence[OpeningHours], day: date, clinic_level: bool) -> Optional[OpeningHours]:
    for entry in entries:
        if entry.is_recurring or entry.override_date != day:
            continue
        if (entry.clinic_id is not None) == clinic_level:
            return entry
    return None


def _recurring_for(entries: Sequence[OpeningHours], weekday: str, clinic_level: bool) -> Optional[OpeningHours]:
    for entry in entries:
        if not entry.is_recurring or entry.day_of_week != weekday:
            continue
        if (entry.clinic_id is not None) == clinic_level:
            return entry
    return None


def clinic_override(entries, window):
    entry = _override_for(entries, window.date, clinic_level=True)
    if entry is None:
        return None
    return _decide(entry, window, "clinic_override", "Clinic is closed on this date")


def company_override(entries, window):
    entry = _override_for(entries, window.date, clinic_level=False)
    if entry is None:
        return None
    return _decide(entry, window, "company_override", "Company is closed on this date")


def clinic_recurring(entries, window):
    entry = _recurring_for(entries, window.weekday, clinic_level=True)
    if entry is None:
        return None
    return _decide(entry, window, "clinic_recurring", f"Clinic is closed on {window.weekday}s")


def company_recurring(entries, window):
    entry = _recurring_for(entries, window.weekday, clinic_level=False)
    if entry is None:
        return None
    return _decide(entry, window, "company_recurring", f"Company is closed on {window.weekday}s")


Strategy = Callable[[Sequence[OpeningHours], LocalWindow], Optional[OpeningHoursDecision]]

PRECEDENCE: tuple[Strategy, ...] = (
    clinic_override,
    company_override,
    clinic_recurring,
    company_recurring,
)


def resolve_opening_hours(entries: Sequence[OpeningHours], window: LocalWindow) -> OpeningHoursDecision:
    """Run the precedence chain over entries already scoped to one clinic and its tenant."""
    for strategy in PRECEDENCE:
        decision = strategy(entries, window)
        if decision is not None:
            return replace(decision, timezone_degraded=window.degraded)
    return replace(UNRESTRICTED, timezone_degraded=window.degraded)


# ============================================================================
# DATABASE ACCESS
# ============================================================================

async def get_clinic(db: AsyncSession, clinic_id: UUID, tenant_id: str) -> Optional[Clinic]:
    result = await db.execute(
        select(Clinic).where(and_(Clinic.id == clinic_id, Clinic.tenant_id == tenant_id))
    )
    return result.scalar_one_or_none()


async def get_tenant_timezone(db: AsyncSession, tenant_id: str) -> Optional[str]:
    result = await db.execute(select(Tenant.timezone).where(Tenant.id == tenant_id))
    return result.scalar_one_or_none()


async def clinic_timezone(db: AsyncSession, clinic: Clinic) -> Optional[str]:
    if clinic.timezone:
        return clinic.timezone
    return await get_tenant_timezone(db, clinic.tenant_id)


async def get_hours_for_clinic(db: AsyncSession, tenant_id: str, clinic_id: UUID) -> list[OpeningHours]:
    """Clinic-specific and company-wide entries for a clinic."""
    result = await db.execute(
        select(OpeningHours).where(
            and_(
                OpeningHours.tenant_id == tenant_id,
                or_(OpeningHours.clinic_id == clinic_id, OpeningHours.clinic_id.is_(None)),
            )
        ).order_by(OpeningHours.created_at)
    )
    return list(result.scalars().all())


async def check_opening_hours(
    db: AsyncSession,
    clinic_id: UUID,
    interval: TimeInterval,
    tenant_id: str,
) -> OpeningHoursDecision:
    """Decide whether ``interval`` falls within the clinic's opening hours."""
    clinic = await get_clinic(db, clinic_id, tenant_id)
    if not clinic:
        return OpeningHoursDecision(within_hours=False, reason="Clinic not found", source="clinic")

    tz_name = await clinic_timezone(db, clinic)
    window = local_window(interval, tz_name)
    entries = await get_hours_for_clinic(db, tenant_id, clinic_id)

    decision = resolve_opening_hours(entries, window)
    logger.debug(
        "Opening hours check: clinic=%s date=%s source=%s within=%s",
        clinic_id,
        window.date,
        decision.source,
        decision.within_hours,
    )
    return decision


# ============================================================================
# ADMINISTRATION
# ============================================================================

def _validate_day(day_of_week: str) -> str:
    day = day_of_week.lower()
    if day not in WEEKDAYS:
        raise ValidationError(f"Invalid day of week: {day_of_week}", field="day_of_week")
    return day


def _validate_times(start_time: str, end_time: str, is_closed: bool):
    try:
        opens = parse_clock(start_time)
        closes = parse_clock(end_time)
    except ValueError as e:
        raise ValidationError(str(e), field="start_time")
    if not is_closed and closes <= opens:
        raise ValidationError("End time must be after start time", field="end_time")


async def _require_clinic(db: AsyncSession, tenant_id: str, clinic_id: Optional[UUID]):
    if clinic_id is not None and not await get_clinic(db, clinic_id, tenant_id):
        raise NotFoundError("Clinic not found or does not belong to tenant", field="clinic_id")


async def set_day_opening_hours(
    db: AsyncSession,
    tenant_id: str,
    day_of_week: str,
    start_time: str,
    end_time: str,
    clinic_id: Optional[UUID] = None,
    is_closed: bool = False,
) -> OpeningHours:
    """Create or replace the recurring hours for one weekday."""
    day = _validate_day(day_of_week)
    _validate_times(start_time, end_time, is_closed)
    await _require_clinic(db, tenant_id, clinic_id)

    clinic_filter = OpeningHours.clinic_id == clinic_id if clinic_id else OpeningHours.clinic_id.is_(None)
    result = await db.execute(
        select(OpeningHours).where(
            and_(
                OpeningHours.tenant_id == tenant_id,
                clinic_filter,
                OpeningHours.day_of_week == day,
                OpeningHours.is_recurring.is_(True),
            )
        )
    )
    entry = result.scalars().first()

    if entry:
        entry.start_time = start_time
        entry.end_time = end_time
        entry.is_closed = is_closed
        entry.updated_at = datetime.utcnow()
    else:
        entry = OpeningHours(
            tenant_id=tenant_id,
            clinic_id=clinic_id,
            day_of_week=day,
            is_recurring=True,
            start_time=start_time,
            end_time=end_time,
            is_closed=is_closed,
        )
        db.add(entry)

    await db.commit()
    await db.refresh(entry)

    logger.info(
        "Opening hours set: tenant=%s clinic=%s day=%s %s-%s closed=%s",
        tenant_id, clinic_id, day, start_time, end_time, is_closed,
    )
    return entry


async def add_opening_hours_override(
    db: AsyncSession,
    tenant_id: str,
    override_date: date,
    clinic_id: Optional[UUID] = None,
    start_time: Optional[str] = None,
    end_time: Optional[str] = None,
    is_closed: bool = False,
) -> OpeningHours:
    """Create or replace the override for one calendar date."""
    if not is_closed and (not start_time or not end_time):
        raise ValidationError("Start and end times are required unless marking as closed", field="start_time")
    start_time = start_time or "00:00"
    end_time = end_time or "00:00"
    _validate_times(start_time, end_time, is_closed)
    await _require_clinic(db, tenant_id, clinic_id)

    clinic_filter = OpeningHours.clinic_id == clinic_id if clinic_id else OpeningHours.clinic_id.is_(None)
    result = await db.execute(
        select(OpeningHours).where(
            and_(
                OpeningHours.tenant_id == tenant_id,
                clinic_filter,
                OpeningHours.is_recurring.is_(False),
                OpeningHours.override_date == override_date,
            )
        )
    )
    entry = result.scalars().first()

    if entry:
        entry.start_time = start_time
        entry.end_time = end_time
        entry.is_closed = is_closed
        entry.updated_at = datetime.utcnow()
    else:
        entry = OpeningHours(
            tenant_id=tenant_id,
            clinic_id=clinic_id,
            day_of_week=WEEKDAYS[override_date.weekday()],
            is_recurring=False,
            override_date=override_date,
            start_time=start_time,
            end_time=end_time,
            is_closed=is_closed,
        )
        db.add(entry)

    await db.commit()
    await db.refresh(entry)

    logger.info(
        "Opening hours override set: tenant=%s clinic=%s date=%s closed=%s",
        tenant_id, clinic_id, override_date, is_closed,
    )
    return entry


async def remove_opening_hours_override(
    db: AsyncSession,
    tenant_id: str,
    override_date: date,
    clinic_id: Optional[UUID] = None,
) -> bool:
    """Delete the override for a date. Returns False when none existed."""
    clinic_filter = OpeningHours.clinic_id == clinic_id if clinic_id else OpeningHours.clinic_id.is_(None)
    result = await db.execute(
        select(OpeningHours).where(
            and_(
                OpeningHours.tenant_id == tenant_id,
                clinic_filter,
                OpeningHours.is_recurring.is_(False),
                OpeningHours.override_date == override_date,
            )
        )
    )
    entry = result.scalars().first()
    if not entry:
        return False

    await db.delete(entry)
    await db.commit()
    logger.info("Opening hours override removed: tenant=%s clinic=%s date=%s", tenant_id, clinic_id, override_date)
    return True


async def get_effective_opening_hours(db: AsyncSession, tenant_id: str, clinic_id: UUID) -> dict:
    """Schedule a clinic actually runs on.

    Clinic recurring hours replace the company's wholesale when any exist.
    Clinic overrides shadow company overrides on the same date.
    """
    entries = await get_hours_for_clinic(db, tenant_id, clinic_id)

    clinic_recurring_rows = [e for e in entries if e.clinic_id is not None and e.is_recurring]
    company_recurring_rows = [e for e in entries if e.clinic_id is None and e.is_recurring]
    clinic_overrides = [e for e in entries if e.clinic_id is not None and not e.is_recurring]
    company_overrides = [e for e in entries if e.clinic_id is None and not e.is_recurring]

    has_clinic_recurring = bool(clinic_recurring_rows)
    recurring = clinic_recurring_rows if has_clinic_recurring else company_recurring_rows

    clinic_dates = {e.override_date for e in clinic_overrides}
    overrides = clinic_overrides + [e for e in company_overrides if e.override_date not in clinic_dates]
    overrides.sort(key=lambda e: e.override_date)

    recurring.sort(key=lambda e: WEEKDAYS.index(e.day_of_week))
    return {
        "recurring": recurring,
        "overrides": overrides,
        "source": "clinic" if has_clinic_recurring else "company",
    }

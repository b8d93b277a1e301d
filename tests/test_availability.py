"""Tests for provider availability resolution, slot listing and administration."""

from datetime import date, datetime
from uuid import uuid4

import pytest
from sqlalchemy import select

from clinic_booking.core.exceptions import NotFoundError, ValidationError
from clinic_booking.models.appointment import Appointment, AppointmentStatus, AppointmentType
from clinic_booking.models.availability import ProviderAvailability
from clinic_booking.models.clinic import Location
from clinic_booking.models.provider import Provider
from clinic_booking.services.availability import (
    AvailabilityProbe,
    add_availability_override,
    availability_timezone,
    check_provider_availability,
    get_recurring_window,
    list_available_slots,
    resolve_availability,
    set_recurring_availability,
)
from clinic_booking.services.clinic_time import LocalMoment, parse_clock

MONDAY = date(2026, 10, 19)
TUESDAY = date(2026, 10, 20)
MONDAY_START = datetime(2026, 10, 19, 4, 0)  # local midnight in New York, as UTC
NOW = datetime(2026, 10, 16, 16, 0)
ROOM = uuid4()


def window(start, end, location_id=None, override_date=None, day="monday"):
    return ProviderAvailability(
        provider_id=uuid4(),
        location_id=location_id,
        day_of_week=day,
        is_recurring=override_date is None,
        override_date=override_date,
        start_time=start,
        end_time=end,
    )


def probe(clock, location_id=None):
    return AvailabilityProbe(
        moment=LocalMoment(date=MONDAY, weekday="monday", minutes=parse_clock(clock), timezone="America/New_York"),
        day_start=MONDAY_START,
        location_id=location_id,
    )


# ============================================================================
# PRECEDENCE
# ============================================================================

def test_window_is_half_open():
    entries = [window("09:00", "17:00")]
    assert resolve_availability(entries, probe("09:00")).available
    assert resolve_availability(entries, probe("16:59")).available

    decision = resolve_availability(entries, probe("17:00"))
    assert not decision.available
    assert decision.reason == "Outside recurring availability window"


def test_no_entries_means_unavailable():
    decision = resolve_availability([], probe("10:00"))
    assert not decision.available
    assert decision.reason == "No recurring availability set for this day"
    assert decision.source == "none"


def test_override_beats_recurring():
    entries = [window("09:00", "17:00"), window("13:00", "15:00", override_date=MONDAY_START)]

    decision = resolve_availability(entries, probe("10:00"))
    assert not decision.available
    assert decision.reason == "Outside override availability window"

    decision = resolve_availability(entries, probe("13:30"))
    assert decision.available
    assert decision.source == "override"


def test_blocked_override_marks_provider_unavailable():
    entries = [window("09:00", "17:00"), window("00:00", "00:00", override_date=MONDAY_START)]
    decision = resolve_availability(entries, probe("10:00"))
    assert not decision.available
    assert decision.reason == "Override marks provider as unavailable"


def test_override_for_another_day_is_ignored():
    entries = [window("09:00", "17:00"), window("00:00", "00:00", override_date=datetime(2026, 10, 26, 4, 0))]
    assert resolve_availability(entries, probe("10:00")).available


def test_location_specific_entries_win_over_general_ones():
    entries = [window("09:00", "12:00"), window("13:00", "17:00", location_id=ROOM)]

    # At ROOM only the ROOM entry counts
    assert not resolve_availability(entries, probe("10:00", location_id=ROOM)).available
    assert resolve_availability(entries, probe("14:00", location_id=ROOM)).available

    # Elsewhere the general entry applies
    assert resolve_availability(entries, probe("10:00", location_id=uuid4())).available
    assert not resolve_availability(entries, probe("14:00", location_id=uuid4())).available


# ============================================================================
# DATABASE-BACKED CHECKS
# ============================================================================

@pytest.mark.asyncio
async def test_provider_with_tuesday_mornings_only(db, clinic, local):
    provider = Provider(id=uuid4(), tenant_id=clinic.tenant_id, name="Dr. Okafor")
    db.add(provider)
    await db.commit()
    await set_recurring_availability(db, clinic.tenant_id, provider.id, "tuesday", "08:00", "12:00")

    decision = await check_provider_availability(db, provider.id, local(TUESDAY, "13:00"), None, clinic.tenant_id)
    assert not decision.available
    assert decision.reason == "Outside recurring availability window"

    decision = await check_provider_availability(db, provider.id, local(TUESDAY, "08:00"), None, clinic.tenant_id)
    assert decision.available

    decision = await check_provider_availability(db, provider.id, local(MONDAY, "09:00"), None, clinic.tenant_id)
    assert decision.reason == "No recurring availability set for this day"


@pytest.mark.asyncio
async def test_day_off_override(db, clinic, local):
    entry = await add_availability_override(db, clinic.tenant_id, clinic.provider_id, MONDAY, now=NOW)
    assert entry.is_blocked
    assert entry.override_date == MONDAY_START

    decision = await check_provider_availability(db, clinic.provider_id, local(MONDAY, "10:00"), None, clinic.tenant_id)
    assert not decision.available
    assert decision.reason == "Override marks provider as unavailable"

    # Tuesday keeps the recurring hours
    decision = await check_provider_availability(db, clinic.provider_id, local(TUESDAY, "10:00"), None, clinic.tenant_id)
    assert decision.available


@pytest.mark.asyncio
async def test_repeated_checks_give_the_same_decision(db, clinic, local):
    await add_availability_override(
        db, clinic.tenant_id, clinic.provider_id, MONDAY, start_time="13:00", end_time="15:00", now=NOW,
    )

    for at, available in [("14:00", True), ("10:00", False)]:
        first = await check_provider_availability(db, clinic.provider_id, local(MONDAY, at), None, clinic.tenant_id)
        second = await check_provider_availability(db, clinic.provider_id, local(MONDAY, at), None, clinic.tenant_id)
        assert first == second
        assert first.available is available
        assert first.source == "override"


@pytest.mark.asyncio
async def test_override_in_the_past_is_rejected(db, clinic):
    with pytest.raises(ValidationError):
        await add_availability_override(
            db, clinic.tenant_id, clinic.provider_id, MONDAY, now=datetime(2026, 10, 21, 12, 0),
        )


@pytest.mark.asyncio
async def test_recurring_availability_is_upserted(db, clinic):
    entry = await set_recurring_availability(db, clinic.tenant_id, clinic.provider_id, "Monday", "07:00", "11:00")
    result = await db.execute(
        select(ProviderAvailability).where(
            ProviderAvailability.provider_id == clinic.provider_id,
            ProviderAvailability.day_of_week == "monday",
        )
    )
    rows = result.scalars().all()
    assert len(rows) == 1
    assert rows[0].id == entry.id
    assert rows[0].start_time == "07:00"

    with pytest.raises(NotFoundError):
        await set_recurring_availability(db, clinic.tenant_id, uuid4(), "monday", "09:00", "17:00")
    with pytest.raises(ValidationError):
        await set_recurring_availability(db, clinic.tenant_id, clinic.provider_id, "monday", "17:00", "09:00")


@pytest.mark.asyncio
async def test_location_timezone_overrides_tenant_timezone(db, clinic, local):
    result = await db.execute(select(Location).where(Location.id == clinic.location_id))
    location = result.scalar_one()
    location.timezone = "America/Los_Angeles"
    await db.commit()

    assert await availability_timezone(db, clinic.tenant_id, clinic.location_id) == "America/Los_Angeles"
    assert await availability_timezone(db, clinic.tenant_id, None) == "America/New_York"

    # 09:00 in New York is 06:00 in Los Angeles
    decision = await check_provider_availability(
        db, clinic.provider_id, local(MONDAY, "09:00"), clinic.location_id, clinic.tenant_id,
    )
    assert not decision.available


@pytest.mark.asyncio
async def test_recurring_window_start(db, clinic, local):
    opens = await get_recurring_window(db, clinic.provider_id, local(MONDAY, "15:00"), None, clinic.tenant_id)
    assert opens == local(MONDAY, "09:00")
    assert await get_recurring_window(db, clinic.provider_id, local(date(2026, 10, 24), "10:00"), None,
                                      clinic.tenant_id) is None


@pytest.mark.asyncio
async def test_slot_grid_marks_booked_slots(db, clinic, local):
    db.add(Appointment(
        tenant_id=clinic.tenant_id,
        patient_id=clinic.patient_id,
        user_id=clinic.patient_user_id,
        provider_id=clinic.provider_id,
        scheduled_at=local(MONDAY, "10:00"),
        duration_minutes=30,
        type=AppointmentType.CONSULTATION,
        status=AppointmentStatus.SCHEDULED,
    ))
    await db.commit()

    slots = await list_available_slots(
        db, clinic.provider_id, local(MONDAY, "08:00"), local(MONDAY, "11:00"), clinic.tenant_id,
    )
    assert [s["start"] for s in slots] == [
        local(MONDAY, "09:00"), local(MONDAY, "09:30"), local(MONDAY, "10:00"), local(MONDAY, "10:30"),
    ]
    assert [s["available"] for s in slots] == [True, True, False, True]


@pytest.mark.asyncio
async def test_cancelled_appointments_free_their_slot(db, clinic, local):
    db.add(Appointment(
        tenant_id=clinic.tenant_id,
        patient_id=clinic.patient_id,
        user_id=clinic.patient_user_id,
        provider_id=clinic.provider_id,
        scheduled_at=local(MONDAY, "10:00"),
        duration_minutes=30,
        type=AppointmentType.CONSULTATION,
        status=AppointmentStatus.CANCELLED,
    ))
    await db.commit()

    slots = await list_available_slots(
        db, clinic.provider_id, local(MONDAY, "10:00"), local(MONDAY, "10:30"), clinic.tenant_id,
    )
    assert slots == [{"start": local(MONDAY, "10:00"), "available": True}]

"""Tests for alternative slot suggestions."""

from datetime import date, datetime, timedelta
from uuid import uuid4

import pytest
from sqlalchemy import delete

from clinic_booking.models.appointment import Appointment, AppointmentStatus, AppointmentType
from clinic_booking.models.availability import ProviderAvailability
from clinic_booking.models.patient import Patient
from clinic_booking.services.clinic_time import TimeInterval
from clinic_booking.services.suggestions import candidate_starts, suggest_slots

MONDAY = date(2026, 10, 19)
NOW = datetime(2026, 10, 16, 16, 0)


async def book(db, clinic, start, minutes=60, **fields):
    values = dict(
        tenant_id=clinic.tenant_id,
        patient_id=clinic.patient_id,
        user_id=clinic.patient_user_id,
        provider_id=clinic.provider_id,
        scheduled_at=start,
        duration_minutes=minutes,
        type=AppointmentType.CONSULTATION,
        status=AppointmentStatus.SCHEDULED,
    )
    values.update(fields)
    appointment = Appointment(id=uuid4(), **values)
    db.add(appointment)
    await db.commit()
    return appointment


def test_candidates_surround_the_conflict():
    conflict = TimeInterval(datetime(2026, 10, 19, 16, 0), datetime(2026, 10, 19, 17, 0))
    assert candidate_starts(conflict, 60) == [
        datetime(2026, 10, 19, 14, 30),
        datetime(2026, 10, 19, 15, 0),
        datetime(2026, 10, 19, 17, 0),
        datetime(2026, 10, 19, 18, 0),
    ]


@pytest.mark.asyncio
async def test_suggestions_are_free_and_available(db, clinic, local):
    existing = await book(db, clinic, local(MONDAY, "12:00"))
    conflict = TimeInterval.from_duration(existing.scheduled_at, 60)

    suggestions = await suggest_slots(
        db, conflict, 60, clinic.provider_id, None, clinic.tenant_id, now=NOW,
    )
    assert suggestions == [local(MONDAY, "10:30"), local(MONDAY, "11:00"), local(MONDAY, "13:00")]
    for start in suggestions:
        assert not TimeInterval.from_duration(start, 60).overlaps(conflict)


@pytest.mark.asyncio
async def test_past_candidates_are_skipped(db, clinic, local):
    existing = await book(db, clinic, local(MONDAY, "12:00"))
    conflict = TimeInterval.from_duration(existing.scheduled_at, 60)

    suggestions = await suggest_slots(
        db, conflict, 60, clinic.provider_id, None, clinic.tenant_id, now=local(MONDAY, "10:45"),
    )
    assert suggestions == [local(MONDAY, "11:00"), local(MONDAY, "13:00"), local(MONDAY, "14:00")]


@pytest.mark.asyncio
async def test_busy_candidates_are_skipped(db, clinic, local):
    existing = await book(db, clinic, local(MONDAY, "12:00"))
    await book(db, clinic, local(MONDAY, "10:00"))
    conflict = TimeInterval.from_duration(existing.scheduled_at, 60)

    suggestions = await suggest_slots(
        db, conflict, 60, clinic.provider_id, None, clinic.tenant_id, now=NOW,
    )
    assert suggestions == [local(MONDAY, "11:00"), local(MONDAY, "13:00"), local(MONDAY, "14:00")]


@pytest.mark.asyncio
async def test_patient_calendar_is_respected(db, clinic, local):
    other_patient = Patient(id=uuid4(), tenant_id=clinic.tenant_id, first_name="Sam", last_name="Ortiz")
    db.add(other_patient)
    await db.commit()

    existing = await book(db, clinic, local(MONDAY, "12:00"), patient_id=other_patient.id)
    # The requesting patient is busy at 13:00 with someone else
    await book(db, clinic, local(MONDAY, "13:00"), provider_id=None)
    conflict = TimeInterval.from_duration(existing.scheduled_at, 60)

    suggestions = await suggest_slots(
        db, conflict, 60, clinic.provider_id, None, clinic.tenant_id, patient_id=clinic.patient_id, now=NOW,
    )
    assert local(MONDAY, "13:00") not in suggestions
    assert suggestions == [local(MONDAY, "10:30"), local(MONDAY, "11:00"), local(MONDAY, "14:00")]


@pytest.mark.asyncio
async def test_falls_back_to_recurring_window_start(db, clinic, local):
    await db.execute(delete(ProviderAvailability).where(ProviderAvailability.provider_id == clinic.provider_id))
    db.add_all([
        ProviderAvailability(
            tenant_id=clinic.tenant_id, provider_id=clinic.provider_id, day_of_week="monday",
            is_recurring=True, start_time="07:00", end_time="08:00",
        ),
        ProviderAvailability(
            tenant_id=clinic.tenant_id, provider_id=clinic.provider_id, day_of_week="monday",
            is_recurring=True, start_time="09:00", end_time="11:00",
        ),
    ])
    await db.commit()

    existing = await book(db, clinic, local(MONDAY, "09:30"))
    conflict = TimeInterval.from_duration(existing.scheduled_at, 60)

    # 10:30 is the only nearby candidate inside a window; the 07:00 fallback comes after it
    suggestions = await suggest_slots(
        db, conflict, 60, clinic.provider_id, None, clinic.tenant_id, now=NOW,
    )
    assert suggestions == [local(MONDAY, "10:30"), local(MONDAY, "07:00")]


@pytest.mark.asyncio
async def test_no_provider_means_no_suggestions(db, clinic, local):
    conflict = TimeInterval.from_duration(local(MONDAY, "12:00"), 60)
    assert await suggest_slots(db, conflict, 60, None, clinic.location_id, clinic.tenant_id, now=NOW) == []


@pytest.mark.asyncio
async def test_suggestion_limit(db, clinic, local):
    existing = await book(db, clinic, local(MONDAY, "12:00"))
    conflict = TimeInterval.from_duration(existing.scheduled_at, 60)
    suggestions = await suggest_slots(
        db, conflict, 60, clinic.provider_id, None, clinic.tenant_id, max_suggestions=1, now=NOW,
    )
    assert suggestions == [conflict.start - timedelta(minutes=90)]

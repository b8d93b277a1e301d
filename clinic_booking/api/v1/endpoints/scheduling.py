"""Opening hours and provider availability: checks and administration."""

from datetime import datetime
from typing import Optional
from uuid import UUID
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from clinic_booking.core.database import get_db
from clinic_booking.core.deps import get_policy_evaluator, http_error
from clinic_booking.core.exceptions import BookingError
from clinic_booking.schemas.scheduling import (
    AvailabilityCheck,
    AvailabilityDecisionOut,
    AvailabilityOverrideSet,
    EffectiveOpeningHoursOut,
    OpeningHoursCheck,
    OpeningHoursDaySet,
    OpeningHoursDecisionOut,
    OpeningHoursOut,
    OpeningHoursOverrideRemove,
    OpeningHoursOverrideSet,
    ProviderAvailabilityOut,
    RecurringAvailabilitySet,
    SlotOut,
)
from clinic_booking.services import availability as availability_service
from clinic_booking.services import opening_hours as opening_hours_service
from clinic_booking.services.clinic_time import TimeInterval, to_naive_utc
from clinic_booking.services.governance import PolicyEvaluator, authorize

router = APIRouter()


# ============================================================================
# CHECKS
# ============================================================================

@router.post("/scheduling/opening-hours/check", response_model=OpeningHoursDecisionOut)
async def check_opening_hours(
    payload: OpeningHoursCheck,
    db: AsyncSession = Depends(get_db),
):
    """Would an interval fall inside the clinic's opening hours?"""
    if payload.end <= payload.start:
        raise HTTPException(status_code=422, detail="end must be after start")

    decision = await opening_hours_service.check_opening_hours(
        db, payload.clinic_id, TimeInterval(payload.start, payload.end), payload.tenant_id
    )
    return OpeningHoursDecisionOut(
        within_hours=decision.within_hours,
        reason=decision.reason,
        source=decision.source,
        timezone_degraded=decision.timezone_degraded,
    )


@router.post("/scheduling/availability/check", response_model=AvailabilityDecisionOut)
async def check_availability(
    payload: AvailabilityCheck,
    db: AsyncSession = Depends(get_db),
):
    """Is the provider available at an instant?"""
    decision = await availability_service.check_provider_availability(
        db, payload.provider_id, payload.at, payload.location_id, payload.tenant_id
    )
    return AvailabilityDecisionOut(
        available=decision.available,
        reason=decision.reason,
        source=decision.source,
        timezone_degraded=decision.timezone_degraded,
    )


@router.get("/scheduling/available-slots", response_model=list[SlotOut])
async def get_available_slots(
    tenant_id: str = Query(...),
    provider_id: UUID = Query(...),
    start: datetime = Query(...),
    end: datetime = Query(...),
    slot_minutes: int = Query(30),
    location_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Slot grid for a provider between two instants."""
    try:
        slots = await availability_service.list_available_slots(
            db,
            provider_id,
            to_naive_utc(start),
            to_naive_utc(end),
            tenant_id,
            slot_minutes=slot_minutes,
            location_id=location_id,
        )
    except BookingError as e:
        raise http_error(e)
    return [SlotOut(**slot) for slot in slots]


# ============================================================================
# OPENING HOURS ADMINISTRATION
# ============================================================================

@router.put("/opening-hours/day", response_model=OpeningHoursOut)
async def set_day_opening_hours(
    payload: OpeningHoursDaySet,
    db: AsyncSession = Depends(get_db),
    governance: PolicyEvaluator = Depends(get_policy_evaluator),
):
    try:
        await authorize(governance, payload.control_plane_context, "opening_hours:write", f"tenant:{payload.tenant_id}")
        return await opening_hours_service.set_day_opening_hours(
            db,
            payload.tenant_id,
            payload.day_of_week,
            payload.start_time,
            payload.end_time,
            clinic_id=payload.clinic_id,
            is_closed=payload.is_closed,
        )
    except BookingError as e:
        raise http_error(e)


@router.post("/opening-hours/overrides", response_model=OpeningHoursOut, status_code=201)
async def add_opening_hours_override(
    payload: OpeningHoursOverrideSet,
    db: AsyncSession = Depends(get_db),
    governance: PolicyEvaluator = Depends(get_policy_evaluator),
):
    try:
        await authorize(governance, payload.control_plane_context, "opening_hours:write", f"tenant:{payload.tenant_id}")
        return await opening_hours_service.add_opening_hours_override(
            db,
            payload.tenant_id,
            payload.override_date,
            clinic_id=payload.clinic_id,
            start_time=payload.start_time,
            end_time=payload.end_time,
            is_closed=payload.is_closed,
        )
    except BookingError as e:
        raise http_error(e)


@router.delete("/opening-hours/overrides")
async def remove_opening_hours_override(
    payload: OpeningHoursOverrideRemove,
    db: AsyncSession = Depends(get_db),
    governance: PolicyEvaluator = Depends(get_policy_evaluator),
):
    try:
        await authorize(governance, payload.control_plane_context, "opening_hours:write", f"tenant:{payload.tenant_id}")
    except BookingError as e:
        raise http_error(e)

    removed = await opening_hours_service.remove_opening_hours_override(
        db, payload.tenant_id, payload.override_date, clinic_id=payload.clinic_id
    )
    if not removed:
        raise HTTPException(status_code=404, detail="Override not found")
    return {"success": True}


@router.get("/opening-hours/effective", response_model=EffectiveOpeningHoursOut)
async def get_effective_opening_hours(
    tenant_id: str = Query(...),
    clinic_id: UUID = Query(...),
    db: AsyncSession = Depends(get_db),
):
    clinic = await opening_hours_service.get_clinic(db, clinic_id, tenant_id)
    if not clinic:
        raise HTTPException(status_code=404, detail="Clinic not found")
    return await opening_hours_service.get_effective_opening_hours(db, tenant_id, clinic_id)


# ============================================================================
# PROVIDER AVAILABILITY ADMINISTRATION
# ============================================================================

@router.put("/availability/recurring", response_model=ProviderAvailabilityOut)
async def set_recurring_availability(
    payload: RecurringAvailabilitySet,
    db: AsyncSession = Depends(get_db),
    governance: PolicyEvaluator = Depends(get_policy_evaluator),
):
    try:
        await authorize(governance, payload.control_plane_context, "availability:write", f"tenant:{payload.tenant_id}")
        return await availability_service.set_recurring_availability(
            db,
            payload.tenant_id,
            payload.provider_id,
            payload.day_of_week,
            payload.start_time,
            payload.end_time,
            location_id=payload.location_id,
        )
    except BookingError as e:
        raise http_error(e)


@router.post("/availability/overrides", response_model=ProviderAvailabilityOut, status_code=201)
async def add_availability_override(
    payload: AvailabilityOverrideSet,
    db: AsyncSession = Depends(get_db),
    governance: PolicyEvaluator = Depends(get_policy_evaluator),
):
    try:
        await authorize(governance, payload.control_plane_context, "availability:write", f"tenant:{payload.tenant_id}")
        return await availability_service.add_availability_override(
            db,
            payload.tenant_id,
            payload.provider_id,
            payload.override_date,
            start_time=payload.start_time,
            end_time=payload.end_time,
            location_id=payload.location_id,
        )
    except BookingError as e:
        raise http_error(e)

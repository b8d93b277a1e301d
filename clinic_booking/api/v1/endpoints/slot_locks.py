"""Slot holds for booking forms."""

from datetime import datetime
from typing import Optional
from uuid import UUID
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from clinic_booking.core.database import get_db
from clinic_booking.core.deps import http_error
from clinic_booking.core.exceptions import SlotLocked
from clinic_booking.schemas.slot_lock import SlotLockOut, SlotLockRequest, SlotLockStatus
from clinic_booking.services.clinic_time import TimeInterval, to_naive_utc
from clinic_booking.services.slot_locks import (
    acquire_slot_locks,
    check_slot_locks,
    extend_slot_locks,
    lock_keys,
    release_session_locks,
)

router = APIRouter()


def _keys_for(provider_id, user_id, patient_id, location_id, interval: TimeInterval) -> list[str]:
    keys = lock_keys(
        interval,
        provider_id=provider_id,
        user_id=user_id,
        patient_id=patient_id,
        location_id=location_id,
    )
    if not keys:
        raise HTTPException(status_code=422, detail="A provider, user, patient or location is required")
    return keys


def _interval(start: datetime, end: datetime) -> TimeInterval:
    try:
        return TimeInterval(start, end)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.post("/", response_model=SlotLockOut, status_code=201)
async def hold_slot(
    payload: SlotLockRequest,
    db: AsyncSession = Depends(get_db),
):
    """Hold a slot for a booking session. Holding it again extends the hold."""
    interval = _interval(payload.start, payload.end)
    keys = _keys_for(payload.provider_id, payload.user_id, payload.patient_id, payload.location_id, interval)
    try:
        token = await acquire_slot_locks(db, payload.tenant_id, keys, interval, payload.session_id)
    except SlotLocked as e:
        raise http_error(e)
    return SlotLockOut(session_id=token.holder, keys=token.keys, expires_at=token.expires_at)


@router.post("/extend", response_model=SlotLockOut)
async def extend_hold(
    tenant_id: str = Query(...),
    session_id: str = Query(...),
    db: AsyncSession = Depends(get_db),
):
    expires_at = await extend_slot_locks(db, tenant_id, session_id)
    if expires_at is None:
        raise HTTPException(status_code=404, detail="No active hold for this session")
    return SlotLockOut(session_id=session_id, keys=[], expires_at=expires_at)


@router.delete("/")
async def release_holds(
    tenant_id: str = Query(...),
    session_id: str = Query(...),
    db: AsyncSession = Depends(get_db),
):
    released = await release_session_locks(db, tenant_id, session_id)
    return {"released": released}


@router.get("/check", response_model=SlotLockStatus)
async def check_hold(
    tenant_id: str = Query(...),
    start: datetime = Query(...),
    end: datetime = Query(...),
    provider_id: Optional[UUID] = Query(None),
    user_id: Optional[UUID] = Query(None),
    location_id: Optional[UUID] = Query(None),
    session_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Is a slot held by another session?"""
    interval = _interval(to_naive_utc(start), to_naive_utc(end))
    keys = _keys_for(provider_id, user_id, None, location_id, interval)
    status = await check_slot_locks(db, tenant_id, keys, holder=session_id)
    return SlotLockStatus(**status)

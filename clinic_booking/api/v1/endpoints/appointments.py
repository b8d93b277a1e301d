"""Appointment booking endpoints."""

from uuid import UUID
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession
from clinic_booking.core.database import get_db, get_session_factory
from clinic_booking.core.deps import get_policy_evaluator, http_error
from clinic_booking.core.exceptions import BookingError
from clinic_booking.models.appointment import Appointment
from clinic_booking.schemas.appointment import (
    AppointmentCreate,
    AppointmentDelete,
    AppointmentOut,
    AppointmentStatusUpdate,
    AppointmentUpdate,
)
from clinic_booking.services.audit_service import drain_audit_outbox
from clinic_booking.services.booking import (
    create_appointment,
    delete_appointment,
    update_appointment,
    update_appointment_status,
)
from clinic_booking.services.governance import PolicyEvaluator
import logging

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/", response_model=AppointmentOut, status_code=201)
async def book_appointment(
    payload: AppointmentCreate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    governance: PolicyEvaluator = Depends(get_policy_evaluator),
    session_factory=Depends(get_session_factory),
):
    """Book a new appointment."""
    try:
        appointment = await create_appointment(db, payload, payload.control_plane_context, governance)
    except BookingError as e:
        logger.info("Booking refused: %s (%s)", e.error_code, e.message)
        raise http_error(e)

    background_tasks.add_task(drain_audit_outbox, session_factory)
    return appointment


@router.get("/{appointment_id}", response_model=AppointmentOut)
async def get_appointment(
    appointment_id: UUID,
    tenant_id: str = Query(...),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Appointment).where(and_(Appointment.id == appointment_id, Appointment.tenant_id == tenant_id))
    )
    appointment = result.scalar_one_or_none()

    if not appointment:
        raise HTTPException(status_code=404, detail="Appointment not found")

    return appointment


@router.patch("/{appointment_id}", response_model=AppointmentOut)
async def edit_appointment(
    appointment_id: UUID,
    payload: AppointmentUpdate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    governance: PolicyEvaluator = Depends(get_policy_evaluator),
    session_factory=Depends(get_session_factory),
):
    """Reschedule or edit an appointment."""
    try:
        appointment = await update_appointment(db, appointment_id, payload, payload.control_plane_context, governance)
    except BookingError as e:
        logger.info("Update refused for %s: %s (%s)", appointment_id, e.error_code, e.message)
        raise http_error(e)

    background_tasks.add_task(drain_audit_outbox, session_factory)
    return appointment


@router.put("/{appointment_id}/status", response_model=AppointmentOut)
async def change_appointment_status(
    appointment_id: UUID,
    payload: AppointmentStatusUpdate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    governance: PolicyEvaluator = Depends(get_policy_evaluator),
    session_factory=Depends(get_session_factory),
):
    """Confirm, start, complete or cancel an appointment."""
    try:
        appointment = await update_appointment_status(
            db,
            appointment_id,
            payload.status,
            payload.control_plane_context,
            governance,
            last_modified_by=payload.last_modified_by,
        )
    except BookingError as e:
        raise http_error(e)

    background_tasks.add_task(drain_audit_outbox, session_factory)
    return appointment


@router.delete("/{appointment_id}")
async def remove_appointment(
    appointment_id: UUID,
    payload: AppointmentDelete,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    governance: PolicyEvaluator = Depends(get_policy_evaluator),
    session_factory=Depends(get_session_factory),
):
    try:
        result = await delete_appointment(
            db, appointment_id, payload.control_plane_context, governance, deleted_by=payload.deleted_by,
        )
    except BookingError as e:
        raise http_error(e)

    background_tasks.add_task(drain_audit_outbox, session_factory)
    return result

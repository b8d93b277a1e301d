"""Appointment booking workflow.

Every create runs the same stages in order and stops at the first failure:

1. policy gate (fails closed)
2. referential checks, all within one tenant
3. timing checks
4. opening hours, when a clinic is given
5. provider availability at the start instant, when a provider is given
6. conflict detection against provider, location and patient calendars
7. conflict resolution: a refusal, with suggestions when the provider or
   location is busy
8. commit of the appointment together with its queued audit event

Stages 6 to 8 run while holding slot locks so two requests cannot both pass
the conflict check for the same slot. Updates re-run only the stages the
changed fields affect.
"""

import enum
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import select, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_booking.core.config import settings
from clinic_booking.core.exceptions import (
    AvailabilityViolation,
    CommitFailure,
    NotFoundError,
    OpeningHoursViolation,
    SchedulingConflict,
    ValidationError,
)
from clinic_booking.models.appointment import Appointment, AppointmentStatus
from clinic_booking.models.clinic import Clinic, Location
from clinic_booking.models.patient import Patient
from clinic_booking.models.provider import Provider
from clinic_booking.models.tenant import Tenant
from clinic_booking.models.user import User
from clinic_booking.schemas.appointment import AppointmentCreate, AppointmentUpdate
from clinic_booking.schemas.governance import ControlPlaneContext
from clinic_booking.services.audit_service import build_event, enqueue_audit_event
from clinic_booking.services.availability import availability_timezone, check_provider_availability
from clinic_booking.services.clinic_time import TimeInterval, format_instant, utcnow
from clinic_booking.services.conflicts import ConflictScope, appointment_interval, booking_scopes, find_overlaps
from clinic_booking.services.governance import PolicyEvaluator, authorize
from clinic_booking.services.opening_hours import check_opening_hours, clinic_timezone
from clinic_booking.services.slot_locks import hold_slot, lock_keys
from clinic_booking.services.suggestions import suggest_slots

logger = logging.getLogger(__name__)


class BookingStage(str, enum.Enum):
    POLICY = "policy"
    REFERENCES = "references"
    TIMING = "timing"
    OPENING_HOURS = "opening_hours"
    AVAILABILITY = "availability"
    CONFLICTS = "conflicts"
    RESOLUTION = "resolution"
    COMMIT = "commit"


# Columns a partial update may change but never clear
NOT_NULL_ON_UPDATE = ("scheduled_at", "duration_minutes", "status", "type")


# ============================================================================
# STAGES
# ============================================================================

async def _get_in_tenant(db: AsyncSession, model, ident: UUID, tenant_id: str):
    result = await db.execute(select(model).where(and_(model.id == ident, model.tenant_id == tenant_id)))
    return result.scalar_one_or_none()


async def _require(db: AsyncSession, model, ident: UUID, tenant_id: str, field: str, label: str):
    row = await _get_in_tenant(db, model, ident, tenant_id)
    if not row:
        raise ValidationError(
            f"{label} not found or does not belong to tenant",
            field=field,
            stage=BookingStage.REFERENCES.value,
        )
    return row


async def check_references(
    db: AsyncSession,
    tenant_id: str,
    patient_id: Optional[UUID] = None,
    user_id: Optional[UUID] = None,
    provider_id: Optional[UUID] = None,
    location_id: Optional[UUID] = None,
    clinic_id: Optional[UUID] = None,
    actor_user_id: Optional[UUID] = None,
    actor_field: str = "created_by",
) -> Optional[User]:
    """Every referenced row must exist in the tenant. Returns the acting user, if one was named."""
    result = await db.execute(select(Tenant).where(Tenant.id == tenant_id))
    tenant = result.scalar_one_or_none()
    if not tenant or not tenant.is_active:
        raise ValidationError("Tenant not found or inactive", field="tenant_id", stage=BookingStage.REFERENCES.value)

    if patient_id is not None:
        await _require(db, Patient, patient_id, tenant_id, "patient_id", "Patient")
    if user_id is not None:
        await _require(db, User, user_id, tenant_id, "user_id", "User")
    if provider_id is not None:
        await _require(db, Provider, provider_id, tenant_id, "provider_id", "Provider")
    if location_id is not None:
        await _require(db, Location, location_id, tenant_id, "location_id", "Location")
    if clinic_id is not None:
        clinic = await _require(db, Clinic, clinic_id, tenant_id, "clinic_id", "Clinic")
        if not clinic.is_active:
            raise ValidationError("Clinic is not active", field="clinic_id", stage=BookingStage.REFERENCES.value)

    actor = None
    if actor_user_id is not None:
        actor = await _require(db, User, actor_user_id, tenant_id, actor_field, "Acting user")
    return actor


def check_timing(scheduled_at: datetime, duration_minutes: Optional[int], now: datetime, require_future: bool = True):
    stage = BookingStage.TIMING.value
    max_minutes = settings.MAX_APPOINTMENT_DURATION_MINUTES
    if duration_minutes is None or duration_minutes <= 0:
        raise ValidationError("Duration must be greater than 0 minutes", field="duration_minutes", stage=stage)
    if duration_minutes > max_minutes:
        raise ValidationError(
            f"Duration cannot exceed {max_minutes} minutes",
            field="duration_minutes",
            stage=stage,
        )
    if require_future and scheduled_at <= now:
        raise ValidationError("Appointment must be scheduled in the future", field="scheduled_at", stage=stage)


async def _check_opening_hours(db: AsyncSession, clinic_id: UUID, interval: TimeInterval, tenant_id: str):
    decision = await check_opening_hours(db, clinic_id, interval, tenant_id)
    if not decision.within_hours:
        raise OpeningHoursViolation(decision.reason, stage=BookingStage.OPENING_HOURS.value)
    if decision.timezone_degraded:
        logger.warning("Opening hours for clinic=%s evaluated in UTC (timezone unresolved)", clinic_id)


async def _check_availability(
    db: AsyncSession,
    provider_id: UUID,
    interval: TimeInterval,
    location_id: Optional[UUID],
    tenant_id: str,
):
    stage = BookingStage.AVAILABILITY.value
    decision = await check_provider_availability(db, provider_id, interval.start, location_id, tenant_id)
    if not decision.available:
        raise AvailabilityViolation(decision.reason, stage=stage)

    # Last occupied minute, since windows are half-open
    last_minute = interval.end - timedelta(minutes=1)
    if last_minute > interval.start:
        end_decision = await check_provider_availability(db, provider_id, last_minute, location_id, tenant_id)
        if not end_decision.available:
            if settings.ENFORCE_END_TIME_AVAILABILITY:
                raise AvailabilityViolation(end_decision.reason, stage=stage)
            logger.info(
                "Appointment for provider=%s runs past availability (%s); allowed",
                provider_id,
                end_decision.reason,
            )


async def _display_timezone(
    db: AsyncSession,
    tenant_id: str,
    clinic_id: Optional[UUID],
    location_id: Optional[UUID],
) -> Optional[str]:
    if clinic_id is not None:
        clinic = await _get_in_tenant(db, Clinic, clinic_id, tenant_id)
        if clinic:
            return await clinic_timezone(db, clinic)
    return await availability_timezone(db, tenant_id, location_id)


async def _detect_and_resolve_conflicts(
    db: AsyncSession,
    tenant_id: str,
    interval: TimeInterval,
    patient_id: UUID,
    user_id: UUID,
    provider_id: Optional[UUID],
    location_id: Optional[UUID],
    clinic_id: Optional[UUID],
    exclude_id: Optional[UUID],
    now: datetime,
):
    """Raise SchedulingConflict for the first calendar the interval clashes with."""
    for scope in booking_scopes(provider_id, user_id, location_id, patient_id):
        if scope.kind != "patient" and not settings.PROVIDER_CONFLICTS_BLOCK:
            continue
        overlaps = await find_overlaps(db, interval, scope, tenant_id, exclude_id=exclude_id)
        if not overlaps:
            continue
        clash = appointment_interval(overlaps[0])
        await _raise_conflict(
            db, tenant_id, scope, interval, clash, patient_id, provider_id, location_id, clinic_id, exclude_id, now,
        )


async def _raise_conflict(
    db: AsyncSession,
    tenant_id: str,
    scope: ConflictScope,
    interval: TimeInterval,
    clash: TimeInterval,
    patient_id: UUID,
    provider_id: Optional[UUID],
    location_id: Optional[UUID],
    clinic_id: Optional[UUID],
    exclude_id: Optional[UUID],
    now: datetime,
):
    stage = BookingStage.RESOLUTION.value
    tz_name = await _display_timezone(db, tenant_id, clinic_id, location_id)
    existing = f"from {format_instant(clash.start, tz_name)} to {format_instant(clash.end, tz_name)}"

    if scope.kind == "patient":
        logger.info("Patient conflict: patient=%s existing=%s", patient_id, clash.start)
        raise SchedulingConflict(
            f"You already have an appointment scheduled {existing}",
            kind="patient",
            conflict_start=clash.start,
            conflict_end=clash.end,
            stage=stage,
        )

    suggestions = await suggest_slots(
        db,
        clash,
        interval.duration_minutes,
        provider_id,
        location_id,
        tenant_id,
        exclude_id=exclude_id,
        patient_id=patient_id,
        now=now,
    )

    location_text = " at the selected location" if location_id else ""
    if scope.kind == "location":
        owner = "The location has an existing appointment"
    elif scope.kind == "user":
        owner = "The calendar has an existing appointment"
    else:
        owner = "The provider has an existing appointment"
    if suggestions:
        suggestion_text = " Suggested alternative times: " + ", ".join(format_instant(s, tz_name) for s in suggestions)
    else:
        suggestion_text = " Please choose a different time."

    logger.info(
        "Scheduling conflict: scope=%s tenant=%s requested=%s existing=%s suggestions=%d",
        scope.kind, tenant_id, interval.start, clash.start, len(suggestions),
    )
    raise SchedulingConflict(
        f"This time slot is no longer available{location_text}. {owner} {existing}.{suggestion_text}",
        kind="location" if scope.kind == "location" else "provider",
        conflict_start=clash.start,
        conflict_end=clash.end,
        suggestions=suggestions,
        stage=stage,
    )


async def _commit(db: AsyncSession, action: str):
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception("Failed to %s appointment", action)
        raise CommitFailure(f"Failed to {action} appointment", stage=BookingStage.COMMIT.value) from e


def _audit_metadata(appointment: Appointment, **extra: Any) -> dict:
    metadata = {
        "appointment_id": str(appointment.id),
        "provider_id": str(appointment.provider_id) if appointment.provider_id else None,
        "patient_id": str(appointment.patient_id),
        "scheduled_at": appointment.scheduled_at.isoformat(),
        "duration_minutes": appointment.duration_minutes,
        "type": appointment.type.value if appointment.type else None,
        "status": appointment.status.value if appointment.status else None,
    }
    metadata.update(extra)
    return metadata


def _jsonable(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, enum.Enum):
        return value.value
    return value


# ============================================================================
# WORKFLOWS
# ============================================================================

async def create_appointment(
    db: AsyncSession,
    request: AppointmentCreate,
    context: Optional[ControlPlaneContext],
    governance: Optional[PolicyEvaluator],
    now: Optional[datetime] = None,
) -> Appointment:
    """Book a new appointment or raise the BookingError describing why not."""
    now = now or utcnow()
    tenant_id = request.tenant_id

    # 1. Policy gate
    context = await authorize(governance, context, "appointment:create", f"tenant:{tenant_id}")

    # 2. Referential validation
    if context.tenant_id != tenant_id:
        raise ValidationError("Request tenant does not match the acting tenant", field="tenant_id",
                              stage=BookingStage.REFERENCES.value)
    creator = await check_references(
        db,
        tenant_id,
        patient_id=request.patient_id,
        user_id=request.user_id,
        provider_id=request.provider_id,
        location_id=request.location_id,
        clinic_id=request.clinic_id,
        actor_user_id=request.created_by,
    )

    # 3. Timing
    check_timing(request.scheduled_at, request.duration_minutes, now)
    interval = TimeInterval.from_duration(request.scheduled_at, request.duration_minutes)

    # 4. Opening hours
    if request.clinic_id is not None:
        await _check_opening_hours(db, request.clinic_id, interval, tenant_id)

    # 5. Provider availability
    if request.provider_id is not None:
        await _check_availability(db, request.provider_id, interval, request.location_id, tenant_id)

    keys = lock_keys(
        interval,
        provider_id=request.provider_id,
        user_id=request.user_id,
        patient_id=request.patient_id,
        location_id=request.location_id,
    )
    holder = request.session_id or f"request:{uuid.uuid4()}"

    async with hold_slot(db, tenant_id, keys, interval, holder):
        # 6 + 7. Conflicts and their resolution
        await _detect_and_resolve_conflicts(
            db,
            tenant_id,
            interval,
            patient_id=request.patient_id,
            user_id=request.user_id,
            provider_id=request.provider_id,
            location_id=request.location_id,
            clinic_id=request.clinic_id,
            exclude_id=None,
            now=now,
        )

        # 8. Commit with the audit event
        appointment = Appointment(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            patient_id=request.patient_id,
            user_id=request.user_id,
            provider_id=request.provider_id,
            location_id=request.location_id,
            clinic_id=request.clinic_id,
            scheduled_at=request.scheduled_at,
            duration_minutes=request.duration_minutes,
            type=request.type,
            status=AppointmentStatus.SCHEDULED,
            notes=request.notes,
            created_by=request.created_by,
            last_modified_by=request.created_by,
        )
        db.add(appointment)

        is_admin = bool(creator and creator.is_clinic_user)
        enqueue_audit_event(db, context, build_event(
            "appointment_admin_created" if is_admin else "appointment_created",
            _audit_metadata(appointment, is_admin_created=is_admin),
        ))
        await _commit(db, "create")

    logger.info(
        "Appointment booked: id=%s tenant=%s provider=%s start=%s duration=%d trace=%s",
        appointment.id,
        tenant_id,
        appointment.provider_id,
        appointment.scheduled_at,
        appointment.duration_minutes,
        context.trace_id,
    )
    return appointment


async def update_appointment(
    db: AsyncSession,
    appointment_id: UUID,
    changes: AppointmentUpdate,
    context: Optional[ControlPlaneContext],
    governance: Optional[PolicyEvaluator],
    now: Optional[datetime] = None,
    action: str = "appointment:update",
) -> Appointment:
    """Apply a partial update, re-checking only what the changed fields affect."""
    now = now or utcnow()

    # 1. Policy gate
    context = await authorize(governance, context, action, f"appointment:{appointment_id}")

    appointment = await _get_in_tenant(db, Appointment, appointment_id, context.tenant_id)
    if not appointment:
        raise NotFoundError("Appointment not found", field="appointment_id", stage=BookingStage.REFERENCES.value)
    tenant_id = appointment.tenant_id

    requested = changes.model_dump(
        exclude_unset=True,
        exclude={"control_plane_context", "session_id", "last_modified_by"},
    )
    for field in NOT_NULL_ON_UPDATE:
        if field in requested and requested[field] is None:
            raise ValidationError(f"{field} cannot be null", field=field, stage=BookingStage.REFERENCES.value)
    changed = {key: value for key, value in requested.items() if getattr(appointment, key) != value}

    scheduled_at = changed.get("scheduled_at", appointment.scheduled_at)
    duration = changed.get("duration_minutes", appointment.duration_minutes)
    provider_id = changed.get("provider_id", appointment.provider_id)
    location_id = changed.get("location_id", appointment.location_id)
    clinic_id = changed.get("clinic_id", appointment.clinic_id)
    status = changed.get("status", appointment.status)

    timing_changed = "scheduled_at" in changed or "duration_minutes" in changed
    active = status != AppointmentStatus.CANCELLED
    reactivated = appointment.status == AppointmentStatus.CANCELLED and active

    # 2. Referential validation for changed references
    modifier = await check_references(
        db,
        tenant_id,
        provider_id=changed.get("provider_id"),
        location_id=changed.get("location_id"),
        clinic_id=changed.get("clinic_id"),
        actor_user_id=changes.last_modified_by,
        actor_field="last_modified_by",
    )

    # 3. Timing
    if timing_changed:
        check_timing(scheduled_at, duration, now, require_future="scheduled_at" in changed)
    interval = TimeInterval.from_duration(scheduled_at, duration)

    # 4. Opening hours
    if active and clinic_id is not None and (timing_changed or "clinic_id" in changed or reactivated):
        await _check_opening_hours(db, clinic_id, interval, tenant_id)

    # 5. Provider availability
    placement_changed = "provider_id" in changed or "location_id" in changed
    if active and provider_id is not None and (timing_changed or placement_changed or reactivated):
        await _check_availability(db, provider_id, interval, location_id, tenant_id)

    async def apply_and_commit():
        for key, value in changed.items():
            setattr(appointment, key, value)
        if changes.last_modified_by is not None:
            appointment.last_modified_by = changes.last_modified_by
        appointment.updated_at = datetime.utcnow()

        is_admin_edit = bool(
            modifier and modifier.is_clinic_user and changes.last_modified_by != appointment.created_by
        )
        if action == "appointment:update_status":
            event_type = "appointment:update_status"
        else:
            event_type = "appointment_admin_edited" if is_admin_edit else "appointment_updated"
        enqueue_audit_event(db, context, build_event(
            event_type,
            _audit_metadata(
                appointment,
                changes={key: _jsonable(value) for key, value in changed.items()},
                is_admin_edit=is_admin_edit,
            ),
        ))
        await _commit(db, "update")

    if active and (timing_changed or placement_changed or reactivated):
        keys = lock_keys(
            interval,
            provider_id=provider_id,
            user_id=appointment.user_id,
            patient_id=appointment.patient_id,
            location_id=location_id,
        )
        holder = changes.session_id or f"request:{uuid.uuid4()}"
        async with hold_slot(db, tenant_id, keys, interval, holder):
            # 6 + 7. Conflicts, ignoring the appointment being moved
            await _detect_and_resolve_conflicts(
                db,
                tenant_id,
                interval,
                patient_id=appointment.patient_id,
                user_id=appointment.user_id,
                provider_id=provider_id,
                location_id=location_id,
                clinic_id=clinic_id,
                exclude_id=appointment.id,
                now=now,
            )
            # 8. Commit
            await apply_and_commit()
    else:
        await apply_and_commit()

    logger.info(
        "Appointment updated: id=%s fields=%s trace=%s",
        appointment.id,
        sorted(changed),
        context.trace_id,
    )
    return appointment


async def update_appointment_status(
    db: AsyncSession,
    appointment_id: UUID,
    status: AppointmentStatus,
    context: Optional[ControlPlaneContext],
    governance: Optional[PolicyEvaluator],
    last_modified_by: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> Appointment:
    """Change only the status. Reviving a cancelled appointment re-checks its slot."""
    return await update_appointment(
        db,
        appointment_id,
        AppointmentUpdate(status=status, last_modified_by=last_modified_by),
        context,
        governance,
        now=now,
        action="appointment:update_status",
    )


async def delete_appointment(
    db: AsyncSession,
    appointment_id: UUID,
    context: Optional[ControlPlaneContext],
    governance: Optional[PolicyEvaluator],
    deleted_by: Optional[UUID] = None,
) -> dict:
    context = await authorize(governance, context, "appointment:delete", f"appointment:{appointment_id}")

    appointment = await _get_in_tenant(db, Appointment, appointment_id, context.tenant_id)
    if not appointment:
        raise NotFoundError("Appointment not found", field="appointment_id", stage=BookingStage.REFERENCES.value)

    deleter = None
    if deleted_by is not None:
        deleter = await _require(db, User, deleted_by, appointment.tenant_id, "deleted_by", "Deleting user")
    is_admin = bool(deleter and deleter.is_clinic_user)

    enqueue_audit_event(db, context, build_event(
        "appointment_admin_deleted" if is_admin else "appointment_deleted",
        _audit_metadata(appointment, is_admin_deleted=is_admin),
    ))
    await db.delete(appointment)
    await _commit(db, "delete")

    logger.info("Appointment deleted: id=%s trace=%s", appointment_id, context.trace_id)
    return {"success": True}

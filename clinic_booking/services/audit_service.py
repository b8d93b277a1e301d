"""Audit outbox.

Booking mutations write their audit event into ``audit_outbox`` inside the
same transaction as the appointment change, so a committed booking always
has its audit record queued. Delivery to the audit sink happens afterwards
and is retried with backoff.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Protocol
from uuid import UUID

from sqlalchemy import select, update, and_, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_booking.core.config import settings
from clinic_booking.models.audit import AuditOutbox, AuditLog
from clinic_booking.schemas.governance import ControlPlaneContext

logger = logging.getLogger(__name__)

RETRY_DELAYS = [1, 5, 30]  # minutes: 1min, 5min, 30min


class AuditSink(Protocol):
    async def emit(
        self,
        db: AsyncSession,
        context: Dict[str, Any],
        event: Dict[str, Any],
        outbox_id: Optional[UUID] = None,
    ) -> None:
        ...


class DatabaseAuditSink:
    """Writes delivered events to the ``audit_log`` table.

    ``outbox_id`` is unique in the log, so a second delivery of the same
    outbox row fails with an IntegrityError instead of duplicating it.
    """

    async def emit(self, db, context, event, outbox_id=None):
        metadata = event.get("metadata") or {}
        appointment_id = metadata.get("appointment_id")
        db.add(AuditLog(
            outbox_id=outbox_id,
            tenant_id=context["tenant_id"],
            event_type=event["type"],
            actor_id=context.get("actor_id"),
            trace_id=context.get("trace_id"),
            appointment_id=UUID(appointment_id) if appointment_id else None,
            details=event,
        ))
        await db.flush()


def build_event(event_type: str, metadata: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "type": event_type,
        "metadata": metadata,
        "timestamp": datetime.utcnow().isoformat(),
    }


def enqueue_audit_event(
    db: AsyncSession,
    context: ControlPlaneContext,
    event: Dict[str, Any],
) -> AuditOutbox:
    """Stage an audit event in the caller's transaction. The caller commits."""
    entry = AuditOutbox(
        tenant_id=context.tenant_id,
        event_type=event["type"],
        payload={"context": context.model_dump(), "event": event},
        attempts=0,
        status="pending",
    )
    db.add(entry)
    return entry


def _claimable(now: datetime):
    """Queued rows, plus claims left behind by a worker that died mid-delivery."""
    stale_before = now - timedelta(seconds=settings.AUDIT_OUTBOX_CLAIM_TIMEOUT_SECONDS)
    return or_(
        AuditOutbox.status.in_(["pending", "retrying"]),
        and_(AuditOutbox.status == "delivering", AuditOutbox.updated_at < stale_before),
    )


async def claim_audit_event(db: AsyncSession, entry_id: UUID, now: Optional[datetime] = None) -> bool:
    """Mark one outbox row as being delivered. False when another worker got it first."""
    now = now or datetime.utcnow()
    result = await db.execute(
        update(AuditOutbox)
        .where(and_(AuditOutbox.id == entry_id, _claimable(now)))
        .values(status="delivering", updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount == 1


async def get_pending_audit_events(
    db: AsyncSession,
    limit: Optional[int] = None,
    now: Optional[datetime] = None,
) -> list[AuditOutbox]:
    """Outbox rows whose next delivery attempt is due."""
    now = now or datetime.utcnow()
    max_attempts = settings.AUDIT_OUTBOX_MAX_ATTEMPTS

    query = select(AuditOutbox).where(
        and_(
            _claimable(now),
            AuditOutbox.attempts < max_attempts,
        )
    ).order_by(AuditOutbox.created_at).limit(limit or settings.AUDIT_OUTBOX_BATCH_SIZE)

    # Claims are written with bulk UPDATEs; reload rows already in the session
    result = await db.execute(query.execution_options(populate_existing=True))
    ready = []
    for entry in result.scalars().all():
        if entry.status == "delivering" or entry.attempts == 0:
            ready.append(entry)
            continue
        delay_minutes = RETRY_DELAYS[min(entry.attempts - 1, len(RETRY_DELAYS) - 1)]
        if now >= entry.updated_at + timedelta(minutes=delay_minutes):
            ready.append(entry)
    return ready


async def mark_delivered(db: AsyncSession, entry: AuditOutbox):
    entry.status = "delivered"
    entry.delivered_at = datetime.utcnow()
    entry.updated_at = datetime.utcnow()
    await db.commit()


async def mark_failed(db: AsyncSession, entry: AuditOutbox, error: str):
    """Record a failed delivery; after the last attempt the row is left as 'failed'."""
    entry.attempts += 1
    entry.last_error = error
    entry.updated_at = datetime.utcnow()

    if entry.attempts >= settings.AUDIT_OUTBOX_MAX_ATTEMPTS:
        entry.status = "failed"
        logger.error(
            "Audit delivery exhausted (max attempts): id=%s, type=%s, tenant=%s, error=%s",
            entry.id,
            entry.event_type,
            entry.tenant_id,
            error[:100],
        )
    else:
        entry.status = "retrying"
        next_delay = RETRY_DELAYS[min(entry.attempts - 1, len(RETRY_DELAYS) - 1)]
        logger.warning(
            "Audit delivery failed (attempt %d/%d), will retry in %d min: id=%s, error=%s",
            entry.attempts,
            settings.AUDIT_OUTBOX_MAX_ATTEMPTS,
            next_delay,
            entry.id,
            error[:100],
        )
    await db.commit()


async def deliver_audit_outbox(db: AsyncSession, sink: Optional[AuditSink] = None) -> Dict[str, int]:
    """Push due outbox rows to the sink.

    Called as a background task after each booking mutation and
    periodically from the maintenance loop.
    """
    sink = sink or DatabaseAuditSink()
    entries = await get_pending_audit_events(db)

    processed = 0
    delivered = 0
    failed = 0
    for entry_id in [entry.id for entry in entries]:
        if not await claim_audit_event(db, entry_id):
            continue
        processed += 1
        # Re-read by id: commits and rollbacks expire everything in the session
        entry = await db.get(AuditOutbox, entry_id, populate_existing=True)
        try:
            await sink.emit(db, entry.payload["context"], entry.payload["event"], outbox_id=entry_id)
            await mark_delivered(db, entry)
            delivered += 1
        except IntegrityError:
            # Already in the log from an earlier claim of this row
            await db.rollback()
            entry = await db.get(AuditOutbox, entry_id, populate_existing=True)
            logger.warning("Audit event already delivered: id=%s", entry_id)
            await mark_delivered(db, entry)
            delivered += 1
        except Exception as e:
            await db.rollback()
            entry = await db.get(AuditOutbox, entry_id, populate_existing=True)
            await mark_failed(db, entry, str(e) or e.__class__.__name__)
            failed += 1

    if processed:
        logger.info(
            "Audit outbox batch complete: %d delivered, %d failed, %d total",
            delivered,
            failed,
            processed,
        )

    return {
        "processed": processed,
        "delivered": delivered,
        "failed": failed,
    }


async def drain_audit_outbox(session_factory) -> None:
    """Background-task entry point: deliver due events on a fresh session."""
    async with session_factory() as db:
        try:
            await deliver_audit_outbox(db)
        except SQLAlchemyError:
            logger.exception("Audit outbox drain failed; rows stay queued for the next run")

"""Expiring slot locks.

A booking holds one lock row per calendar it touches and per time bucket
its interval covers, e.g. ``provider:<id>:<bucket>``. Any two overlapping
intervals in the same calendar share at least one bucket, so the unique
``(tenant_id, scope_key)`` constraint serialises competing bookings. Rows
expire after ``SLOT_LOCK_TTL_SECONDS`` so a crashed request cannot wedge a
slot.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import select, delete, update, and_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_booking.core.config import settings
from clinic_booking.core.exceptions import SlotLocked
from clinic_booking.models.slot_lock import SlotLock
from clinic_booking.services.clinic_time import TimeInterval, utcnow

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1)
LOCKED_MESSAGE = "This time slot is currently being booked by someone else. Please try again shortly."


@dataclass
class SlotLockToken:
    tenant_id: str
    holder: str
    keys: list[str]
    expires_at: datetime


def _buckets(interval: TimeInterval, bucket_minutes: int) -> range:
    size = bucket_minutes * 60
    first = int((interval.start - _EPOCH).total_seconds()) // size
    last = (int((interval.end - _EPOCH).total_seconds()) - 1) // size
    return range(first, last + 1)


def lock_keys(
    interval: TimeInterval,
    provider_id: Optional[UUID] = None,
    user_id: Optional[UUID] = None,
    patient_id: Optional[UUID] = None,
    location_id: Optional[UUID] = None,
    bucket_minutes: Optional[int] = None,
) -> list[str]:
    """Lock keys for every calendar and bucket an interval touches."""
    bucket_minutes = bucket_minutes or settings.SLOT_LOCK_BUCKET_MINUTES
    owners = []
    if provider_id is not None:
        owners.append(f"provider:{provider_id}")
    elif user_id is not None:
        owners.append(f"user:{user_id}")
    if patient_id is not None:
        owners.append(f"patient:{patient_id}")
    if location_id is not None:
        owners.append(f"location:{location_id}")

    return [f"{owner}:{bucket}" for owner in owners for bucket in _buckets(interval, bucket_minutes)]


async def acquire_slot_locks(
    db: AsyncSession,
    tenant_id: str,
    keys: list[str],
    interval: TimeInterval,
    holder: str,
    ttl_seconds: Optional[int] = None,
    now: Optional[datetime] = None,
) -> SlotLockToken:
    """Take every lock in ``keys`` for ``holder`` or none of them.

    Locks already held by the same holder are extended. Expired locks held
    by anyone are replaced. Raises SlotLocked if another holder has a live
    lock on any key.
    """
    now = now or utcnow()
    expires_at = now + timedelta(seconds=ttl_seconds or settings.SLOT_LOCK_TTL_SECONDS)
    keys = sorted(set(keys))

    await db.execute(
        delete(SlotLock).where(
            and_(
                SlotLock.tenant_id == tenant_id,
                SlotLock.scope_key.in_(keys),
                SlotLock.expires_at <= now,
            )
        )
    )
    result = await db.execute(
        select(SlotLock).where(and_(SlotLock.tenant_id == tenant_id, SlotLock.scope_key.in_(keys)))
    )
    held = {lock.scope_key: lock for lock in result.scalars().all()}

    for key in keys:
        lock = held.get(key)
        if lock is None:
            db.add(SlotLock(
                tenant_id=tenant_id,
                scope_key=key,
                holder=holder,
                slot_start=interval.start,
                slot_end=interval.end,
                expires_at=expires_at,
            ))
        elif lock.holder == holder:
            lock.slot_start = interval.start
            lock.slot_end = interval.end
            lock.expires_at = expires_at
        else:
            await db.rollback()
            logger.info("Slot lock busy: tenant=%s key=%s holder=%s", tenant_id, key, lock.holder)
            raise SlotLocked(LOCKED_MESSAGE, expires_at=lock.expires_at)

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.info("Slot lock lost race: tenant=%s keys=%s", tenant_id, keys)
        raise SlotLocked(LOCKED_MESSAGE)

    logger.debug("Acquired %d slot lock(s) for holder=%s until %s", len(keys), holder, expires_at)
    return SlotLockToken(tenant_id=tenant_id, holder=holder, keys=keys, expires_at=expires_at)


async def release_slot_locks(db: AsyncSession, token: SlotLockToken) -> int:
    result = await db.execute(
        delete(SlotLock).where(
            and_(
                SlotLock.tenant_id == token.tenant_id,
                SlotLock.holder == token.holder,
                SlotLock.scope_key.in_(token.keys),
            )
        )
    )
    await db.commit()
    return result.rowcount or 0


async def release_session_locks(db: AsyncSession, tenant_id: str, holder: str) -> int:
    """Drop every lock a session holds, e.g. when the booking form is closed."""
    result = await db.execute(
        delete(SlotLock).where(and_(SlotLock.tenant_id == tenant_id, SlotLock.holder == holder))
    )
    await db.commit()
    released = result.rowcount or 0
    if released:
        logger.info("Released %d slot lock(s) for session %s", released, holder)
    return released


async def extend_slot_locks(
    db: AsyncSession,
    tenant_id: str,
    holder: str,
    ttl_seconds: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Optional[datetime]:
    """Push out the expiry of a session's live locks. Returns the new expiry, or None if it holds none."""
    now = now or utcnow()
    expires_at = now + timedelta(seconds=ttl_seconds or settings.SLOT_LOCK_TTL_SECONDS)
    result = await db.execute(
        update(SlotLock)
        .where(and_(SlotLock.tenant_id == tenant_id, SlotLock.holder == holder, SlotLock.expires_at > now))
        .values(expires_at=expires_at)
    )
    await db.commit()
    if not result.rowcount:
        return None
    return expires_at


async def check_slot_locks(
    db: AsyncSession,
    tenant_id: str,
    keys: list[str],
    holder: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict:
    """Report whether any of ``keys`` is held by someone other than ``holder``."""
    now = now or utcnow()
    result = await db.execute(
        select(SlotLock).where(
            and_(
                SlotLock.tenant_id == tenant_id,
                SlotLock.scope_key.in_(keys),
                SlotLock.expires_at > now,
            )
        )
    )
    live = list(result.scalars().all())
    others = [lock for lock in live if lock.holder != holder]
    return {
        "is_locked": bool(others),
        "held_by_you": bool(live) and not others,
        "lock_count": len(live),
        "expires_at": max((lock.expires_at for lock in others), default=None),
    }


async def cleanup_expired_locks(db: AsyncSession, now: Optional[datetime] = None) -> int:
    now = now or utcnow()
    result = await db.execute(delete(SlotLock).where(SlotLock.expires_at <= now))
    await db.commit()
    removed = result.rowcount or 0
    if removed:
        logger.info("Cleaned up %d expired slot lock(s)", removed)
    return removed


async def _release_quietly(db: AsyncSession, token: SlotLockToken, rollback: bool):
    try:
        if rollback:
            await db.rollback()
        await release_slot_locks(db, token)
    except SQLAlchemyError:
        # The TTL frees the slot if the release itself fails
        logger.exception("Failed to release slot locks for holder=%s", token.holder)


@asynccontextmanager
async def hold_slot(
    db: AsyncSession,
    tenant_id: str,
    keys: list[str],
    interval: TimeInterval,
    holder: str,
):
    """Hold locks for the body of the block and release them afterwards.

    Anything the block left uncommitted is rolled back before release when
    the block raises.
    """
    token = await acquire_slot_locks(db, tenant_id, keys, interval, holder)
    try:
        yield token
    except BaseException:
        await _release_quietly(db, token, rollback=True)
        raise
    await _release_quietly(db, token, rollback=False)

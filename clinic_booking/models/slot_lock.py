"""Expiring slot reservations held while a booking is checked and committed."""

from sqlalchemy import Column, String, DateTime, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
import uuid
from datetime import datetime
from clinic_booking.core.database import Base


class SlotLock(Base):
    __tablename__ = "slot_locks"
    __table_args__ = (
        UniqueConstraint("tenant_id", "scope_key", name="uq_slot_locks_tenant_scope"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String, nullable=False, index=True)
    scope_key = Column(String, nullable=False)  # e.g. "provider:<uuid>:<bucket>"
    holder = Column(String, nullable=False, index=True)  # session id or request token
    slot_start = Column(DateTime, nullable=False)
    slot_end = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)

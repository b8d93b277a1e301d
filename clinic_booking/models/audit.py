"""Audit outbox and delivered audit log models."""

from sqlalchemy import Column, String, Integer, Text, DateTime, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.types import JSON
import uuid
from datetime import datetime
from clinic_booking.core.database import Base


class AuditOutbox(Base):
    """Audit events written in the same transaction as the booking."""
    __tablename__ = "audit_outbox"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String, nullable=False, index=True)
    event_type = Column(String, nullable=False)
    payload = Column(JSON, nullable=False)  # {"context": {...}, "event": {...}}
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    status = Column(String, nullable=False, default="pending", index=True)  # pending, retrying, delivering, delivered, failed
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    delivered_at = Column(DateTime, nullable=True)


class AuditLog(Base):
    __tablename__ = "audit_log"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    outbox_id = Column(UUID(as_uuid=True), nullable=True, unique=True)
    tenant_id = Column(String, nullable=False, index=True)
    event_type = Column(String, nullable=False, index=True)
    actor_id = Column(String, nullable=True)
    trace_id = Column(String, nullable=True)
    appointment_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

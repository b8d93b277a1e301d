"""Opening hours model.

A row with ``clinic_id`` NULL is a company-wide default for the tenant.
Recurring rows are keyed by weekday; override rows by a clinic-local date.
"""

from sqlalchemy import Column, String, DateTime, Boolean, Date, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
import uuid
from datetime import datetime
from clinic_booking.core.database import Base


class OpeningHours(Base):
    __tablename__ = "opening_hours"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    clinic_id = Column(UUID(as_uuid=True), ForeignKey("clinics.id", ondelete="CASCADE"), nullable=True, index=True)
    day_of_week = Column(String, nullable=False)  # "monday" .. "sunday"
    is_recurring = Column(Boolean, nullable=False, default=True)
    override_date = Column(Date, nullable=True, index=True)
    start_time = Column(String, nullable=False)  # "HH:MM"
    end_time = Column(String, nullable=False)
    is_closed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

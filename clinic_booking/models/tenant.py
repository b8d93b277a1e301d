"""Tenant model.

Every other table carries ``tenant_id``; a tenant is one company running
one or more clinics.
"""

from sqlalchemy import Column, String, DateTime, Boolean
from datetime import datetime
from clinic_booking.core.database import Base


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    timezone = Column(String, nullable=True)  # IANA name, e.g. "America/New_York"
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

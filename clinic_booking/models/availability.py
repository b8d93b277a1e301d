"""Provider availability model.

Overrides are keyed by the UTC instant of local midnight for the day they
replace. An override of "00:00"-"00:00" marks the provider unavailable.
"""

from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
import uuid
from datetime import datetime
from clinic_booking.core.database import Base


class ProviderAvailability(Base):
    __tablename__ = "provider_availability"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    provider_id = Column(UUID(as_uuid=True), ForeignKey("providers.id", ondelete="CASCADE"), nullable=False, index=True)
    location_id = Column(UUID(as_uuid=True), ForeignKey("locations.id", ondelete="CASCADE"), nullable=True)
    day_of_week = Column(String, nullable=False)
    is_recurring = Column(Boolean, nullable=False, default=True)
    override_date = Column(DateTime, nullable=True, index=True)
    start_time = Column(String, nullable=False)
    end_time = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def is_blocked(self) -> bool:
        return self.start_time == "00:00" and self.end_time == "00:00"

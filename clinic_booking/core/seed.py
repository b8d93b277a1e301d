"""Seed a demo tenant on startup in development."""

import logging
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from clinic_booking.core.database import async_session
from clinic_booking.models.clinic import Clinic
from clinic_booking.models.opening_hours import OpeningHours
from clinic_booking.models.tenant import Tenant

logger = logging.getLogger(__name__)

DEMO_TENANT_ID = "demo-clinic-group"
DEMO_TIMEZONE = "America/New_York"
DEMO_WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday")


async def seed_demo_tenant():
    """Create a demo tenant with one clinic and weekday company hours if it doesn't exist."""
    async with async_session() as db:
        try:
            result = await db.execute(select(Tenant).where(Tenant.id == DEMO_TENANT_ID))
            if result.scalar_one_or_none():
                logger.info("Demo tenant already exists: %s", DEMO_TENANT_ID)
                return

            db.add(Tenant(id=DEMO_TENANT_ID, name="Demo Clinic Group", timezone=DEMO_TIMEZONE))
            db.add(Clinic(tenant_id=DEMO_TENANT_ID, name="Downtown Clinic"))
            for day in DEMO_WEEKDAYS:
                db.add(OpeningHours(
                    tenant_id=DEMO_TENANT_ID,
                    clinic_id=None,
                    day_of_week=day,
                    is_recurring=True,
                    start_time="08:00",
                    end_time="18:00",
                ))
            await db.commit()

            logger.info("Demo tenant created: %s", DEMO_TENANT_ID)

        except SQLAlchemyError as e:
            logger.error("Failed to seed demo tenant: %s", e)
            await db.rollback()

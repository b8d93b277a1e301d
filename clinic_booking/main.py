import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from clinic_booking.api.v1.router import api_router
from clinic_booking.core.config import settings
from clinic_booking.core.database import async_session
from clinic_booking.core.seed import seed_demo_tenant
from clinic_booking.services.audit_service import deliver_audit_outbox
from clinic_booking.services.slot_locks import cleanup_expired_locks

logger = logging.getLogger(__name__)


async def run_maintenance_once():
    """Deliver queued audit events and drop expired slot locks."""
    async with async_session() as db:
        await cleanup_expired_locks(db)
        await deliver_audit_outbox(db)


async def maintenance_loop(interval_seconds: int):
    while True:
        try:
            await run_maintenance_once()
        except Exception:
            # Keep looping; queued audit events and stale locks are retried next pass
            logger.exception("Maintenance pass failed")
        await asyncio.sleep(interval_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    if settings.SEED_DEMO_TENANT and settings.APP_ENV == "development":
        await seed_demo_tenant()

    task = None
    if settings.MAINTENANCE_INTERVAL_SECONDS > 0:
        task = asyncio.create_task(maintenance_loop(settings.MAINTENANCE_INTERVAL_SECONDS))
    yield
    if task:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


app = FastAPI(
    title="Clinic Booking API",
    description="Multi-tenant clinic appointment booking engine",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api/v1")


@app.get("/health")
async def health():
    return {"status": "ok", "service": "clinic-booking-api", "version": "0.1.0"}

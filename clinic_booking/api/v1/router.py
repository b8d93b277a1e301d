from fastapi import APIRouter
from clinic_booking.api.v1.endpoints import appointments, scheduling, slot_locks

api_router = APIRouter()
api_router.include_router(appointments.router, prefix="/appointments", tags=["appointments"])
api_router.include_router(scheduling.router, tags=["scheduling"])
api_router.include_router(slot_locks.router, prefix="/slot-locks", tags=["slot-locks"])

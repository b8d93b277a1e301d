"""FastAPI dependencies shared by the booking endpoints."""

from fastapi import HTTPException

from clinic_booking.core.config import settings
from clinic_booking.core.exceptions import BookingError
from clinic_booking.services.governance import PolicyEvaluator, TenantPolicyEvaluator


def get_policy_evaluator() -> PolicyEvaluator:
    """Policy evaluator for mutating requests. Override in app.dependency_overrides to plug in another engine."""
    return TenantPolicyEvaluator(settings.DENIED_POLICY_ACTIONS)


def http_error(exc: BookingError) -> HTTPException:
    """Translate a booking error into the HTTPException the endpoint raises."""
    return HTTPException(status_code=exc.http_status, detail=exc.to_detail())

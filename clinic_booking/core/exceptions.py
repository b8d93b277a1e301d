"""Booking error taxonomy.

Services raise these; the API layer turns them into HTTP responses with
``http_status`` and ``to_detail()``.
"""

from datetime import datetime
from typing import Any, Optional


class BookingError(Exception):
    """Base class for every error the booking engine raises on purpose."""

    error_code = "booking_error"
    http_status = 400

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.stage = stage

    def to_detail(self) -> dict[str, Any]:
        detail: dict[str, Any] = {"error": self.error_code, "message": self.message}
        if self.stage:
            detail["stage"] = self.stage
        return detail


class GovernanceDenied(BookingError):
    """Missing control-plane context, or the policy evaluator said no."""

    error_code = "governance_denied"
    http_status = 403

    def __init__(self, message: str, reason_code: str = "denied", stage: Optional[str] = None):
        super().__init__(message, stage=stage)
        self.reason_code = reason_code

    def to_detail(self) -> dict[str, Any]:
        detail = super().to_detail()
        detail["reason_code"] = self.reason_code
        return detail


class ValidationError(BookingError):
    error_code = "validation_error"
    http_status = 422

    def __init__(self, message: str, field: Optional[str] = None, stage: Optional[str] = None):
        super().__init__(message, stage=stage)
        self.field = field

    def to_detail(self) -> dict[str, Any]:
        detail = super().to_detail()
        if self.field:
            detail["field"] = self.field
        return detail


class NotFoundError(ValidationError):
    error_code = "not_found"
    http_status = 404


class OpeningHoursViolation(BookingError):
    error_code = "opening_hours_violation"
    http_status = 422

    def __init__(self, reason: str, stage: Optional[str] = None):
        super().__init__(f"Outside opening hours: {reason}", stage=stage)
        self.reason = reason

    def to_detail(self) -> dict[str, Any]:
        detail = super().to_detail()
        detail["reason"] = self.reason
        return detail


class AvailabilityViolation(BookingError):
    error_code = "availability_violation"
    http_status = 422

    def __init__(self, reason: str, stage: Optional[str] = None):
        super().__init__(f"Provider is not available: {reason}", stage=stage)
        self.reason = reason

    def to_detail(self) -> dict[str, Any]:
        detail = super().to_detail()
        detail["reason"] = self.reason
        return detail


class SchedulingConflict(BookingError):
    """The requested interval overlaps an existing appointment.

    ``kind`` is ``"provider"``, ``"location"`` or ``"patient"``. Patient
    conflicts never carry suggestions.
    """

    error_code = "scheduling_conflict"
    http_status = 409

    def __init__(
        self,
        message: str,
        kind: str,
        conflict_start: Optional[datetime] = None,
        conflict_end: Optional[datetime] = None,
        suggestions: Optional[list[datetime]] = None,
        stage: Optional[str] = None,
    ):
        super().__init__(message, stage=stage)
        self.kind = kind
        self.conflict_start = conflict_start
        self.conflict_end = conflict_end
        self.suggestions = list(suggestions or [])

    def to_detail(self) -> dict[str, Any]:
        detail = super().to_detail()
        detail["kind"] = self.kind
        if self.conflict_start and self.conflict_end:
            detail["conflict"] = {
                "start": self.conflict_start.isoformat(),
                "end": self.conflict_end.isoformat(),
            }
        detail["suggestions"] = [s.isoformat() for s in self.suggestions]
        return detail


class SlotLocked(SchedulingConflict):
    """Another booking session currently holds the slot."""

    error_code = "slot_locked"

    def __init__(self, message: str, expires_at: Optional[datetime] = None, stage: Optional[str] = None):
        super().__init__(message, kind="lock", stage=stage)
        self.expires_at = expires_at

    def to_detail(self) -> dict[str, Any]:
        detail = super().to_detail()
        if self.expires_at:
            detail["expires_at"] = self.expires_at.isoformat()
        return detail


class CommitFailure(BookingError):
    error_code = "commit_failure"
    http_status = 500

"""Clinic-local time helpers.

Instants are naive UTC datetimes everywhere in the service. These helpers
project them onto a clinic's wall clock and back.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from clinic_booking.core.config import settings

logger = logging.getLogger(__name__)

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


@dataclass(frozen=True)
class TimeInterval:
    """Half-open ``[start, end)`` interval of naive UTC instants."""
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.end <= self.start:
            raise ValueError("interval end must be after its start")

    @classmethod
    def from_duration(cls, start: datetime, duration_minutes: int) -> "TimeInterval":
        return cls(start, start + timedelta(minutes=duration_minutes))

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    def overlaps(self, other: "TimeInterval") -> bool:
        return self.start < other.end and self.end > other.start


@dataclass(frozen=True)
class LocalMoment:
    date: date
    weekday: str
    minutes: int  # minutes since local midnight
    timezone: str
    degraded: bool = False


@dataclass(frozen=True)
class LocalWindow:
    """An interval seen on a clinic wall clock.

    ``end_minutes`` is measured from midnight of the start date, so an
    interval crossing local midnight ends past 1440.
    """
    date: date
    weekday: str
    start_minutes: int
    end_minutes: int
    timezone: str
    degraded: bool = False


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalise an incoming datetime to naive UTC; naive input is taken as UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def resolve_timezone(name: Optional[str]) -> tuple[tzinfo, str, bool]:
    """Return ``(tzinfo, effective_name, degraded)``.

    Unknown or malformed names fall back to UTC with ``degraded`` set.
    """
    if not name:
        name = settings.DEFAULT_TIMEZONE
    try:
        return ZoneInfo(name), name, False
    except (ZoneInfoNotFoundError, ValueError) as e:
        logger.warning("Unknown timezone %r, falling back to UTC: %s", name, e)
        return timezone.utc, "UTC", True


def to_local(instant: datetime, tz_name: Optional[str]) -> tuple[datetime, str, bool]:
    tz, effective, degraded = resolve_timezone(tz_name)
    local = instant.replace(tzinfo=timezone.utc).astimezone(tz)
    return local, effective, degraded


def local_moment(instant: datetime, tz_name: Optional[str]) -> LocalMoment:
    """Local date, weekday name and minutes since midnight for an instant."""
    local, effective, degraded = to_local(instant, tz_name)
    return LocalMoment(
        date=local.date(),
        weekday=WEEKDAYS[local.weekday()],
        minutes=local.hour * 60 + local.minute,
        timezone=effective,
        degraded=degraded,
    )


def local_window(interval: TimeInterval, tz_name: Optional[str]) -> LocalWindow:
    start = local_moment(interval.start, tz_name)
    end = local_moment(interval.end, tz_name)
    day_offset = (end.date - start.date).days
    return LocalWindow(
        date=start.date,
        weekday=start.weekday,
        start_minutes=start.minutes,
        end_minutes=end.minutes + day_offset * 1440,
        timezone=start.timezone,
        degraded=start.degraded,
    )


def local_time_to_utc(day: date, clock: str, tz_name: Optional[str]) -> datetime:
    """UTC instant of a wall-clock time ``HH:MM`` on ``day`` in ``tz_name``."""
    tz, _, _ = resolve_timezone(tz_name)
    minutes = parse_clock(clock)
    # Aware arithmetic is wall-clock arithmetic; the offset is resolved on conversion
    local = datetime(day.year, day.month, day.day, tzinfo=tz) + timedelta(minutes=minutes)
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def start_of_day(instant: datetime, tz_name: Optional[str]) -> datetime:
    """UTC instant of local midnight for the day containing ``instant``."""
    moment = local_moment(instant, tz_name)
    return local_time_to_utc(moment.date, "00:00", tz_name)


def parse_clock(value: str) -> int:
    """Convert HH:MM string to minutes since midnight."""
    try:
        hours, minutes = value.split(":")
        h, m = int(hours), int(minutes)
    except (AttributeError, ValueError):
        raise ValueError(f"invalid clock time {value!r}, expected HH:MM")
    if not (0 <= h <= 24 and 0 <= m < 60) or (h == 24 and m != 0):
        raise ValueError(f"invalid clock time {value!r}, expected HH:MM")
    return h * 60 + m


def format_clock(minutes: int) -> str:
    """Convert minutes since midnight to HH:MM string."""
    h = minutes // 60
    m = minutes % 60
    return f"{h:02d}:{m:02d}"


def format_instant(instant: datetime, tz_name: Optional[str]) -> str:
    local, _, _ = to_local(instant, tz_name)
    return local.strftime("%a %b %d, %Y %I:%M %p %Z").strip()

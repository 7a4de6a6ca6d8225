"""
Operating and working hours.

Weekly schedules keyed by lowercase day name ("monday" ... "sunday").
All containment checks run on business-local wall-clock time.
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DAY_NAMES = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)

# "14:00", "9:30", "9:30 AM", "9:30pm"
_TIME_PATTERN = re.compile(
    r"^\s*(?P<hour>\d{1,2}):(?P<minute>\d{2})\s*(?P<meridiem>[AaPp][Mm])?\s*$"
)


def day_name(day: Union[date, datetime]) -> str:
    """Lowercase weekday name for a date."""
    return DAY_NAMES[day.weekday()]


def parse_time(value: Union[str, time]) -> time:
    """Parse a wall-clock time in 24h ("14:00") or 12h ("2:00 PM") form.

    Raises:
        ValueError: If the value is not a recognizable time
    """
    if isinstance(value, time):
        return value

    match = _TIME_PATTERN.match(value or "")
    if not match:
        raise ValueError(f"Invalid time format: {value!r}")

    hour = int(match.group("hour"))
    minute = int(match.group("minute"))
    meridiem = match.group("meridiem")

    if meridiem:
        if not 1 <= hour <= 12:
            raise ValueError(f"Invalid 12-hour time: {value!r}")
        meridiem = meridiem.upper()
        if meridiem == "PM" and hour != 12:
            hour += 12
        elif meridiem == "AM" and hour == 12:
            hour = 0

    if hour > 23 or minute > 59:
        raise ValueError(f"Invalid time: {value!r}")

    return time(hour, minute)


def parse_date(value: Union[str, date]) -> date:
    """Parse an ISO "yyyy-MM-dd" date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value.strip())
    except (AttributeError, ValueError) as e:
        raise ValueError(f"Invalid date format: {value!r}") from e


def get_zone(tz_name: Optional[str]) -> ZoneInfo:
    """Resolve an IANA timezone name, defaulting to UTC."""
    try:
        return ZoneInfo(tz_name or "UTC")
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {tz_name!r}") from e


def localize(dt: datetime, tz_name: Optional[str]) -> datetime:
    """Return an aware datetime in the business timezone.

    Naive datetimes are interpreted as business-local wall-clock time.
    """
    zone = get_zone(tz_name)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=zone)
    return dt.astimezone(zone)


def combine(day: date, at: time, tz_name: Optional[str]) -> datetime:
    """Build an aware datetime from a local date and wall-clock time."""
    return datetime.combine(day, at, tzinfo=get_zone(tz_name))


def ensure_aware(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes (values read back from SQLite)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def to_utc(dt: datetime) -> datetime:
    """Aware UTC datetime for storage; naive values are taken as UTC."""
    return ensure_aware(dt).astimezone(timezone.utc)


@dataclass(frozen=True)
class TimeRange:
    """Wall-clock interval within a single day, [start, end)."""

    start: time
    end: time

    def overlaps(self, start: time, end: time) -> bool:
        return start < self.end and self.start < end

    def to_dict(self) -> dict:
        return {"start": self.start.strftime("%H:%M"), "end": self.end.strftime("%H:%M")}

    @classmethod
    def from_dict(cls, data: dict) -> "TimeRange":
        return cls(start=parse_time(data["start"]), end=parse_time(data["end"]))


@dataclass(frozen=True)
class DayHours:
    """Opening window for one weekday, with optional breaks."""

    open: time
    close: time
    breaks: tuple[TimeRange, ...] = field(default_factory=tuple)
    closed: bool = False

    def contains(self, start: time, end: time) -> bool:
        """Check that [start, end) lies inside opening hours and avoids breaks."""
        if self.closed:
            return False
        if start < self.open or end > self.close:
            return False
        return not self.overlaps_break(start, end)

    def overlaps_break(self, start: time, end: time) -> bool:
        return any(b.overlaps(start, end) for b in self.breaks)

    def to_dict(self) -> dict:
        if self.closed:
            return {"closed": True}
        return {
            "open": self.open.strftime("%H:%M"),
            "close": self.close.strftime("%H:%M"),
            "breaks": [b.to_dict() for b in self.breaks],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DayHours":
        if data.get("closed"):
            return cls(open=time(0), close=time(0), closed=True)
        opening = parse_time(data.get("open", data.get("start")))
        closing = parse_time(data.get("close", data.get("end")))
        if closing <= opening:
            raise ValueError(f"Closing time must be after opening time: {data}")
        return cls(
            open=opening,
            close=closing,
            breaks=tuple(TimeRange.from_dict(b) for b in data.get("breaks", [])),
        )


WeeklyHours = dict[str, DayHours]


def parse_weekly_hours(data: Optional[dict[str, Any]]) -> WeeklyHours:
    """Parse {"monday": {"open": "09:00", "close": "17:00"}, ...}.

    Days mapped to None, or missing entirely, are closed.
    """
    hours: WeeklyHours = {}
    for name, value in (data or {}).items():
        key = name.strip().lower()
        if key not in DAY_NAMES:
            raise ValueError(f"Unknown day name: {name!r}")
        if value is None:
            continue
        hours[key] = value if isinstance(value, DayHours) else DayHours.from_dict(value)
    return hours


def weekly_hours_to_dict(hours: WeeklyHours) -> dict[str, dict]:
    return {name: day.to_dict() for name, day in hours.items()}


def hours_for(hours: WeeklyHours, day: Union[date, datetime]) -> Optional[DayHours]:
    """Opening window for a date, or None when closed."""
    day_hours = hours.get(day_name(day))
    if day_hours is None or day_hours.closed:
        return None
    return day_hours


def window_within_hours(
    hours: WeeklyHours,
    start: datetime,
    end: datetime,
    tz_name: Optional[str] = None,
) -> bool:
    """Check a window against a weekly schedule in the business timezone.

    Windows crossing midnight never fit a single day's hours.
    """
    local_start = localize(start, tz_name)
    local_end = localize(end, tz_name)

    day_hours = hours_for(hours, local_start)
    if day_hours is None:
        return False

    if local_end.date() != local_start.date():
        return False

    return day_hours.contains(local_start.time(), local_end.time())


def minutes_until_close(day_hours: DayHours, at: time) -> int:
    """Minutes between a wall-clock time and closing (negative when past)."""
    anchor = date(2000, 1, 1)
    delta = datetime.combine(anchor, day_hours.close) - datetime.combine(anchor, at)
    return int(delta / timedelta(minutes=1))

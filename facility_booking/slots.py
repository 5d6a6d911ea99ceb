from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo

from .errors import InvalidInterval

SLOT_LENGTH = timedelta(hours=1)
FORM_HOURS = tuple(range(9, 19))


@dataclass(frozen=True)
class Interval:
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise InvalidInterval("Booking start time must be earlier than end time.")


def overlaps(a: Interval, b: Interval) -> bool:
    """Return True when two intervals share at least one instant.

    Intervals are treated as half-open ranges: [start, end)
    so touching boundaries (e.g. 09:00-10:00 and 10:00-11:00) do not overlap.
    """
    return a.start < b.end and b.start < a.end


def to_utc(value: datetime, tz: tzinfo = timezone.utc) -> datetime:
    """Attach the facility zone to naive values, then convert to UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=tz)
    return value.astimezone(timezone.utc)


def parse_timestamp(text: str, tz: tzinfo = timezone.utc) -> datetime:
    cleaned = text.strip()
    if cleaned.endswith(("Z", "z")):
        cleaned = cleaned[:-1] + "+00:00"
    return to_utc(datetime.fromisoformat(cleaned), tz)


def normalize(
    day: date,
    hour_or_time: int | time,
    end_time: time | None = None,
    tz: tzinfo = timezone.utc,
) -> tuple[datetime, datetime]:
    """Turn a facility-local date plus an hour (grid) or time into a UTC interval."""
    if isinstance(hour_or_time, bool):
        raise InvalidInterval("hour must be an integer or a time value")
    if isinstance(hour_or_time, int):
        if not 0 <= hour_or_time <= 23:
            raise InvalidInterval(f"hour must be between 0 and 23, got {hour_or_time}")
        start_local = datetime.combine(day, time(hour_or_time, 0))
    else:
        start_local = datetime.combine(day, hour_or_time.replace(tzinfo=None))

    start = to_utc(start_local, tz)
    if end_time is None:
        # add in UTC so DST transitions keep the slot at one hour
        end = start + SLOT_LENGTH
    else:
        end = to_utc(datetime.combine(day, end_time.replace(tzinfo=None)), tz)

    interval = Interval(start, end)
    return interval.start, interval.end


def day_bounds(day: date, tz: tzinfo = timezone.utc) -> Interval:
    start = to_utc(datetime.combine(day, time(0, 0)), tz)
    end = to_utc(datetime.combine(day + timedelta(days=1), time(0, 0)), tz)
    return Interval(start, end)

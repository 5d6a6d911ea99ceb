from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone, tzinfo
from typing import Iterable

import holidays as pyholidays

from .errors import BookingError, InvalidRequest, SlotConflict
from .service import BookingRequest, BookingService
from .slots import FORM_HOURS, Interval, normalize, overlaps
from .yaml_store import Booking

_HOLIDAY_CACHE: dict[tuple[str, int], set[date]] = {}


@dataclass(frozen=True)
class FormResult:
    status: str
    message: str
    booking: Booking | None = None
    available_hours: list[int] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == "booked"


class BookingForm:
    """Hourly grid booking for a single date."""

    def __init__(self, service: BookingService, tz: tzinfo = timezone.utc, holiday_country: str | None = None) -> None:
        self.service = service
        self.repository = service.repository
        self.catalogue = service.catalogue
        self.tz = tz
        self.holiday_country = holiday_country

    def available_hours(self, facility_id: str, day: date) -> list[int]:
        facility = self.catalogue.get(facility_id)
        if self.holiday_country and _is_public_holiday(self.holiday_country, day):
            return []

        taken = self.repository.list_taken(facility.facility_id, day, self.tz)
        return [hour for hour in FORM_HOURS if not _hour_is_taken(day, hour, taken, self.tz)]

    def submit(
        self,
        owner: str,
        facility_id: str,
        day: date,
        hour: int,
        project_name: str | None = None,
        notes: str | None = None,
        equipment: Iterable[str] | None = None,
        notify_contact: str | None = None,
        now: datetime | None = None,
    ) -> FormResult:
        try:
            if hour not in FORM_HOURS:
                raise InvalidRequest(
                    f"hour must be one of {FORM_HOURS[0]:02d}:00-{FORM_HOURS[-1]:02d}:00, got {hour}",
                )
            if self.holiday_country and _is_public_holiday(self.holiday_country, day):
                raise InvalidRequest(f"{day.isoformat()} is a public holiday; facilities are closed.")
            start, end = normalize(day, hour, tz=self.tz)
            booking = self.service.create_booking(
                BookingRequest(
                    owner=owner,
                    facility_id=facility_id,
                    start_time=start,
                    end_time=end,
                    project_name=project_name,
                    notes=notes,
                    equipment=tuple(equipment) if equipment is not None else None,
                    notify_contact=notify_contact,
                ),
                now=now,
            )
        except SlotConflict:
            return FormResult(
                status="conflict",
                message="That slot was just booked by someone else. Please pick another hour.",
                available_hours=self.available_hours(facility_id, day),
            )
        except BookingError as error:
            return FormResult(status="invalid", message=str(error))

        return FormResult(
            status="booked",
            message="Booked!",
            booking=booking,
            available_hours=self.available_hours(facility_id, day),
        )


def _hour_is_taken(day: date, hour: int, taken: list[Interval], tz: tzinfo) -> bool:
    start, end = normalize(day, hour, tz=tz)
    slot = Interval(start, end)
    return any(overlaps(slot, interval) for interval in taken)


def _is_public_holiday(country: str, target_date: date) -> bool:
    key = (country.upper(), target_date.year)
    if key not in _HOLIDAY_CACHE:
        holiday_map = pyholidays.country_holidays(key[0], years=[target_date.year])
        _HOLIDAY_CACHE[key] = set(holiday_map.keys())
    return target_date in _HOLIDAY_CACHE[key]

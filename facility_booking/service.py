from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Any

from .errors import InvalidRequest, UpstreamUnavailable
from .facilities import FacilityCatalogue
from .notifications import WhatsAppNotifier, format_confirmation
from .slots import Interval, parse_timestamp, to_utc
from .yaml_store import Booking, BookingCandidate, BookingYamlRepository

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("owner", "facility_id", "start_time", "end_time")


@dataclass(frozen=True)
class BookingRequest:
    owner: str | None
    facility_id: str | None
    start_time: datetime | None
    end_time: datetime | None
    project_name: str | None = None
    notes: str | None = None
    equipment: tuple[str, ...] | None = None
    notify_contact: str | None = None

    @staticmethod
    def from_payload(payload: dict[str, Any], tz: tzinfo = timezone.utc) -> "BookingRequest":
        """Build a request from the JSON body of the create-booking endpoint."""

        def _text(key: str) -> str | None:
            value = payload.get(key)
            if value is None:
                return None
            value = str(value).strip()
            return value or None

        def _timestamp(key: str) -> datetime | None:
            value = _text(key)
            if value is None:
                return None
            try:
                return parse_timestamp(value, tz)
            except ValueError as error:
                raise InvalidRequest(f"{key} must be an ISO-8601 timestamp, got {value!r}") from error

        equipment = payload.get("equipment")
        if equipment is not None and not isinstance(equipment, list):
            raise InvalidRequest("equipment must be a list of strings")

        return BookingRequest(
            owner=_text("owner"),
            facility_id=_text("facility_id"),
            start_time=_timestamp("start_time"),
            end_time=_timestamp("end_time"),
            project_name=_text("project_name"),
            notes=_text("notes"),
            equipment=tuple(str(item) for item in equipment) if equipment is not None else None,
            notify_contact=_text("notify_contact"),
        )


class BookingService:
    """The only way a booking gets written; every intake channel calls create_booking."""

    def __init__(
        self,
        repository: BookingYamlRepository,
        catalogue: FacilityCatalogue,
        tz: tzinfo = timezone.utc,
        notifier: WhatsAppNotifier | None = None,
    ) -> None:
        self.repository = repository
        self.catalogue = catalogue
        self.tz = tz
        self.notifier = notifier

    def create_booking(self, request: BookingRequest, now: datetime | None = None) -> Booking:
        missing = [name for name in REQUIRED_FIELDS if _is_blank(getattr(request, name))]
        if missing:
            raise InvalidRequest(f"Missing required fields: {', '.join(missing)}", missing_fields=missing)

        facility = self.catalogue.get(request.facility_id)
        interval = Interval(to_utc(request.start_time, self.tz), to_utc(request.end_time, self.tz))

        equipment = None
        if facility.has_equipment_checklist and request.equipment is not None:
            equipment = tuple(request.equipment)

        candidate = BookingCandidate(
            facility_id=facility.facility_id,
            owner=str(request.owner).strip(),
            start=interval.start,
            end=interval.end,
            project_name=request.project_name,
            notes=request.notes,
            equipment=equipment,
        )
        booking = self.repository.insert(candidate, now=now)
        logger.info(
            "Booking %s created for %s on %s [%s, %s)",
            booking.booking_id,
            booking.owner,
            booking.facility_id,
            booking.start.isoformat(),
            booking.end.isoformat(),
        )

        if request.notify_contact:
            self._send_confirmation(booking, request.notify_contact)
        return booking

    def _send_confirmation(self, booking: Booking, contact: str) -> None:
        if self.notifier is None:
            logger.debug("No notifier configured; skipping confirmation for %s", booking.booking_id)
            return

        facility = self.catalogue.get(booking.facility_id)
        try:
            self.notifier.send(contact, format_confirmation(booking, facility, self.tz))
        except (UpstreamUnavailable, ValueError) as error:
            logger.warning("Confirmation for booking %s was not delivered: %s", booking.booking_id, error)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())

from __future__ import annotations


class BookingError(Exception):
    """Base class for every failure a booking caller is expected to handle."""

    status_code = 400

    @property
    def error_name(self) -> str:
        return type(self).__name__


class InvalidRequest(BookingError, ValueError):
    def __init__(self, message: str, missing_fields: list[str] | None = None) -> None:
        super().__init__(message)
        self.missing_fields = list(missing_fields or [])


class UnknownFacility(BookingError, ValueError):
    def __init__(self, facility_id: str | None) -> None:
        super().__init__(f"Unknown facility: {facility_id!r}")
        self.facility_id = facility_id


class InvalidInterval(BookingError, ValueError):
    pass


class SlotConflict(BookingError):
    status_code = 409

    def __init__(self, facility_id: str, conflicting_booking_id: str | None = None) -> None:
        super().__init__(f"Time slot already booked for facility {facility_id!r}.")
        self.facility_id = facility_id
        self.conflicting_booking_id = conflicting_booking_id


class UpstreamUnavailable(BookingError):
    status_code = 503

    def __init__(self, service: str, reason: str) -> None:
        super().__init__(f"{service} is unavailable: {reason}")
        self.service = service
        self.reason = reason


class NotAuthorized(BookingError):
    status_code = 403

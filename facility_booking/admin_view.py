from __future__ import annotations

from .errors import NotAuthorized
from .facilities import FacilityCatalogue
from .yaml_store import Booking, BookingSubscription, BookingYamlRepository


class AdminView:
    """Cross-user listing of one facility's bookings.

    Change events only trigger a full re-fetch, so duplicated or missed
    events cannot leave the listing out of step with the store.
    """

    def __init__(
        self,
        repository: BookingYamlRepository,
        catalogue: FacilityCatalogue,
        is_authorized: bool,
        facility_id: str | None = None,
    ) -> None:
        if is_authorized is not True:
            raise NotAuthorized("Not authorized")

        self.repository = repository
        self.catalogue = catalogue
        self.facility_id = ""
        self._subscription: BookingSubscription | None = None
        self._bookings: list[Booking] = []
        self.switch_facility(facility_id or catalogue.ids()[0])

    @property
    def bookings(self) -> list[Booking]:
        return list(self._bookings)

    def switch_facility(self, facility_id: str) -> list[Booking]:
        facility = self.catalogue.get(facility_id)
        self.facility_id = facility.facility_id
        self._subscription = self.repository.subscribe(facility.facility_id)
        return self.refresh()

    def refresh(self) -> list[Booking]:
        self._bookings = self.repository.list_by_facility(self.facility_id)
        return self.bookings

    def process_events(self) -> bool:
        """Re-fetch when the subscription delivered anything; returns whether it did."""
        if self._subscription is None or not self._subscription.poll():
            return False
        self.refresh()
        return True

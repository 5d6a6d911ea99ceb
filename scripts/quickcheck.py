from __future__ import annotations

from datetime import date
from pathlib import Path
import tempfile
import traceback

from facility_booking import (
    BookingRequest,
    BookingService,
    BookingYamlRepository,
    SlotConflict,
    load_catalogue,
)
from facility_booking.slots import normalize


def main() -> int:
    print("[INFO] Facility Booking Quick Check")

    data_dir = Path(tempfile.mkdtemp(prefix="facility-booking-"))
    repo = BookingYamlRepository(data_dir)
    service = BookingService(repo, load_catalogue())
    day = date(2025, 9, 5)

    start, end = normalize(day, 9)
    first = service.create_booking(
        BookingRequest(owner="quickcheck", facility_id="studio", start_time=start, end_time=end, project_name="Quick check")
    )
    print(f"[OK] Booked {first.facility_id} {first.start.isoformat()} ~ {first.end.isoformat()} ({first.booking_id})")

    try:
        service.create_booking(BookingRequest(owner="quickcheck-2", facility_id="studio", start_time=start, end_time=end))
    except SlotConflict as error:
        print(f"[OK] Overlapping request rejected: {error}")
    else:
        print("[ERROR] Overlapping request was accepted.")
        return 1

    taken = repo.list_taken("studio", day)
    print(f"[OK] Taken intervals on {day.isoformat()}: {len(taken)}")
    print(f"[OK] Bookings YAML: {repo.bookings_file.resolve()}")
    print(f"[OK] Event Log YAML: {repo.log_file.resolve()}")

    print("[DONE] Quick check completed successfully.")
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except Exception:
        print("[ERROR] Quick check failed.")
        traceback.print_exc()
        raise SystemExit(1)

import tempfile
import threading
import unittest
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from unittest import mock

from facility_booking import BookingCandidate, BookingYamlRepository, ReservationStorageError, SlotConflict
from facility_booking.slots import overlaps

UTC = timezone.utc
NOW = datetime(2025, 9, 1, 8, 0, tzinfo=UTC)


def _at(day: int, hour: int, minute: int = 0) -> datetime:
    return datetime(2025, 9, day, hour, minute, tzinfo=UTC)


def _candidate(facility_id: str, start: datetime, end: datetime, owner: str = "user-1", **extra) -> BookingCandidate:
    return BookingCandidate(facility_id=facility_id, owner=owner, start=start, end=end, **extra)


class TestBookingYamlRepository(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_dir = tempfile.TemporaryDirectory()
        self.data_dir = Path(self._temp_dir.name) / "data"
        self.repo = BookingYamlRepository(self.data_dir)

    def tearDown(self) -> None:
        self._temp_dir.cleanup()

    def test_insert_persists_booking(self) -> None:
        created = self.repo.insert(
            _candidate("studio", _at(5, 9), _at(5, 10), project_name="Podcast", equipment=("Camera", "Mics")),
            now=NOW,
        )

        reloaded = BookingYamlRepository(self.data_dir).get(created.booking_id)
        self.assertIsNotNone(reloaded)
        self.assertEqual(reloaded, created)
        self.assertEqual(reloaded.created_at, NOW)
        self.assertEqual(reloaded.equipment, ("Camera", "Mics"))

    def test_insert_rejects_overlap_on_same_facility(self) -> None:
        first = self.repo.insert(_candidate("studio", _at(5, 9), _at(5, 10)), now=NOW)

        with self.assertRaises(SlotConflict) as caught:
            self.repo.insert(_candidate("studio", _at(5, 9, 30), _at(5, 10, 30), owner="user-2"), now=NOW)

        self.assertEqual(caught.exception.conflicting_booking_id, first.booking_id)
        self.assertEqual(len(self.repo.list_by_facility("studio")), 1)

    def test_touching_boundary_is_not_a_conflict(self) -> None:
        self.repo.insert(_candidate("studio", _at(5, 9), _at(5, 10)), now=NOW)
        self.repo.insert(_candidate("studio", _at(5, 10), _at(5, 11)), now=NOW)

        self.assertEqual(len(self.repo.list_by_facility("studio")), 2)

    def test_same_interval_on_other_facility_is_allowed(self) -> None:
        self.repo.insert(_candidate("studio", _at(5, 9), _at(5, 10)), now=NOW)
        self.repo.insert(_candidate("robotics", _at(5, 9), _at(5, 10)), now=NOW)

        self.assertEqual(len(self.repo.list_by_facility("robotics")), 1)

    def test_listings_are_ordered_by_start(self) -> None:
        self.repo.insert(_candidate("studio", _at(6, 14), _at(6, 15)), now=NOW)
        self.repo.insert(_candidate("studio", _at(5, 9), _at(5, 10), owner="user-2"), now=NOW)
        self.repo.insert(_candidate("robotics", _at(4, 9), _at(4, 10)), now=NOW)

        studio = self.repo.list_by_facility("studio")
        self.assertEqual([booking.start for booking in studio], [_at(5, 9), _at(6, 14)])

        mine = self.repo.list_by_owner("user-1")
        self.assertEqual([booking.facility_id for booking in mine], ["robotics", "studio"])

    def test_list_taken_returns_intervals_touching_the_day(self) -> None:
        self.repo.insert(_candidate("studio", _at(5, 13), _at(5, 14)), now=NOW)
        self.repo.insert(_candidate("studio", _at(5, 9), _at(5, 10)), now=NOW)
        self.repo.insert(_candidate("studio", _at(4, 23), _at(5, 1)), now=NOW)
        self.repo.insert(_candidate("studio", _at(6, 9), _at(6, 10)), now=NOW)

        taken = self.repo.list_taken("studio", date(2025, 9, 5))

        self.assertEqual([interval.start for interval in taken], [_at(4, 23), _at(5, 9), _at(5, 13)])

    def test_list_taken_uses_facility_local_day(self) -> None:
        plus_two = timezone(timedelta(hours=2))
        self.repo.insert(_candidate("studio", _at(4, 22, 30), _at(4, 23, 30)), now=NOW)

        self.assertEqual(len(self.repo.list_taken("studio", date(2025, 9, 5), plus_two)), 1)
        self.assertEqual(len(self.repo.list_taken("studio", date(2025, 9, 5))), 0)

    def test_insert_logs_created_and_rejected_events(self) -> None:
        self.repo.insert(_candidate("studio", _at(5, 9), _at(5, 10)), now=NOW)
        with self.assertRaises(SlotConflict):
            self.repo.insert(_candidate("studio", _at(5, 9), _at(5, 10)), now=NOW)

        contents = self.repo.log_file.read_text(encoding="utf-8")
        self.assertIn("BOOKING_CREATED", contents)
        self.assertIn("BOOKING_REJECTED", contents)
        sequences = [event.sequence for event in self.repo.read_events()]
        self.assertEqual(sequences, sorted(set(sequences)))

    def test_corrupted_file_is_backed_up_and_reset(self) -> None:
        self.repo.bookings_file.write_text("facility: studio\n", encoding="utf-8")

        self.assertEqual(self.repo.list_by_facility("studio"), [])
        backups = list(self.data_dir.glob("bookings.corrupt.*.yaml"))
        self.assertEqual(len(backups), 1)
        self.assertIn("YAML_RECOVERED", self.repo.log_file.read_text(encoding="utf-8"))

    def test_malformed_rows_are_skipped_on_reads_without_new_events(self) -> None:
        self.repo.insert(_candidate("studio", _at(5, 9), _at(5, 10)), now=NOW)
        contents = self.repo.bookings_file.read_text(encoding="utf-8")
        self.repo.bookings_file.write_text(contents + "- just a string\n- {id: broken}\n", encoding="utf-8")
        events_before = len(self.repo.read_events())

        with self.assertLogs("facility_booking.yaml_store", level="WARNING"):
            for _ in range(3):
                self.assertEqual(len(self.repo.list_by_facility("studio")), 1)
                self.repo.list_taken("studio", date(2025, 9, 5))

        self.assertEqual(len(self.repo.read_events()), events_before)

    def test_insert_refuses_to_reset_corrupted_bookings_file(self) -> None:
        first = self.repo.insert(_candidate("studio", _at(5, 9), _at(5, 10)), now=NOW)
        contents = self.repo.bookings_file.read_text(encoding="utf-8")
        self.repo.bookings_file.write_text(contents + "- : [unclosed\n", encoding="utf-8")

        with self.assertLogs("facility_booking.yaml_store", level="ERROR"):
            with self.assertRaises(ReservationStorageError):
                self.repo.insert(_candidate("studio", _at(5, 9), _at(5, 10), owner="user-2"), now=NOW)

        self.assertIn(first.booking_id, self.repo.bookings_file.read_text(encoding="utf-8"))
        self.assertEqual(len(list(self.data_dir.glob("bookings.corrupt.*.yaml"))), 1)

    def test_insert_refuses_to_skip_invalid_booking_rows(self) -> None:
        first = self.repo.insert(_candidate("studio", _at(5, 9), _at(5, 10)), now=NOW)
        contents = self.repo.bookings_file.read_text(encoding="utf-8")
        self.repo.bookings_file.write_text(contents + "- {id: broken}\n", encoding="utf-8")

        with self.assertLogs("facility_booking.yaml_store", level="ERROR"):
            with self.assertRaises(ReservationStorageError):
                self.repo.insert(_candidate("studio", _at(5, 9), _at(5, 10), owner="user-2"), now=NOW)

        self.assertEqual([row.booking_id for row in self.repo.list_by_facility("studio")], [first.booking_id])

    def test_event_log_failure_after_commit_does_not_fail_insert(self) -> None:
        failure = ReservationStorageError("disk full")
        with mock.patch.object(self.repo, "_log_event", side_effect=failure):
            with self.assertLogs("facility_booking.yaml_store", level="ERROR"):
                booking = self.repo.insert(_candidate("studio", _at(5, 9), _at(5, 10)), now=NOW)

        self.assertEqual([row.booking_id for row in self.repo.list_by_facility("studio")], [booking.booking_id])
        with self.assertRaises(SlotConflict):
            self.repo.insert(_candidate("studio", _at(5, 9), _at(5, 10), owner="user-2"), now=NOW)

    def test_concurrent_overlapping_inserts_commit_exactly_one(self) -> None:
        workers = 8
        barrier = threading.Barrier(workers)
        outcomes: list[str] = []
        outcomes_lock = threading.Lock()

        def attempt(index: int) -> None:
            repo = BookingYamlRepository(self.data_dir)
            barrier.wait()
            try:
                repo.insert(_candidate("studio", _at(5, 9), _at(5, 10), owner=f"user-{index}"), now=NOW)
                result = "ok"
            except SlotConflict:
                result = "conflict"
            with outcomes_lock:
                outcomes.append(result)

        threads = [threading.Thread(target=attempt, args=(index,)) for index in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        self.assertEqual(outcomes.count("ok"), 1)
        self.assertEqual(outcomes.count("conflict"), workers - 1)
        self.assertEqual(len(self.repo.list_by_facility("studio")), 1)

    def test_committed_bookings_never_overlap(self) -> None:
        requests = [(9, 0, 10, 0), (9, 30, 10, 30), (10, 0, 11, 0), (10, 45, 12, 0), (8, 0, 9, 15), (12, 0, 12, 30)]
        for start_hour, start_minute, end_hour, end_minute in requests:
            try:
                self.repo.insert(
                    _candidate("studio", _at(5, start_hour, start_minute), _at(5, end_hour, end_minute)),
                    now=NOW,
                )
            except SlotConflict:
                pass

        committed = self.repo.list_by_facility("studio")
        for index, first in enumerate(committed):
            for second in committed[index + 1:]:
                self.assertFalse(overlaps(first.interval, second.interval))


class TestBookingSubscription(unittest.TestCase):
    def test_poll_returns_new_creation_events_for_facility(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = BookingYamlRepository(Path(temp_dir) / "data")
            repo.insert(_candidate("studio", _at(5, 8), _at(5, 9)), now=NOW)
            subscription = repo.subscribe("studio")

            self.assertEqual(subscription.poll(), [])

            created = repo.insert(_candidate("studio", _at(5, 9), _at(5, 10)), now=NOW)
            repo.insert(_candidate("robotics", _at(5, 9), _at(5, 10)), now=NOW)
            with self.assertRaises(SlotConflict):
                repo.insert(_candidate("studio", _at(5, 9), _at(5, 10)), now=NOW)

            events = subscription.poll()
            self.assertEqual(len(events), 1)
            self.assertEqual(events[0].payload["booking_id"], created.booking_id)
            self.assertEqual(subscription.poll(), [])

    def test_unfiltered_subscription_sees_every_facility(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = BookingYamlRepository(Path(temp_dir) / "data")
            subscription = repo.subscribe()
            repo.insert(_candidate("studio", _at(5, 9), _at(5, 10)), now=NOW)
            repo.insert(_candidate("robotics", _at(5, 9), _at(5, 10)), now=NOW)

            self.assertEqual({event.facility_id for event in subscription.poll()}, {"studio", "robotics"})

    def test_cursor_rewinds_when_event_log_is_reset(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = BookingYamlRepository(Path(temp_dir) / "data")
            subscription = repo.subscribe("studio")
            repo.insert(_candidate("studio", _at(5, 9), _at(5, 10)), now=NOW)
            self.assertEqual(len(subscription.poll()), 1)

            repo.log_file.write_text("[]\n", encoding="utf-8")
            repo.insert(_candidate("studio", _at(5, 10), _at(5, 11)), now=NOW)

            self.assertEqual(len(subscription.poll()), 1)

    def test_listen_stops_after_timeout(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = BookingYamlRepository(Path(temp_dir) / "data")
            subscription = repo.subscribe("studio")
            repo.insert(_candidate("studio", _at(5, 9), _at(5, 10)), now=NOW)

            events = list(subscription.listen(poll_interval=0.01, timeout=0.05))

            self.assertEqual(len(events), 1)


if __name__ == "__main__":
    unittest.main()

import unittest
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from facility_booking import FORM_HOURS, Interval, InvalidInterval, normalize, overlaps
from facility_booking.slots import day_bounds, parse_timestamp, to_utc

UTC = timezone.utc


def _at(hour: int, minute: int = 0) -> datetime:
    return datetime(2025, 9, 5, hour, minute, tzinfo=UTC)


class TestOverlap(unittest.TestCase):
    def setUp(self) -> None:
        self.existing = Interval(_at(10), _at(11))

    def test_non_overlapping_before_passes(self) -> None:
        self.assertFalse(overlaps(Interval(_at(9), _at(9, 59)), self.existing))

    def test_non_overlapping_after_passes(self) -> None:
        self.assertFalse(overlaps(Interval(_at(11, 1), _at(12)), self.existing))

    def test_exactly_touching_boundary_passes(self) -> None:
        self.assertFalse(overlaps(Interval(_at(11), _at(12)), self.existing))
        self.assertFalse(overlaps(Interval(_at(9), _at(10)), self.existing))

    def test_partially_overlapping_fails(self) -> None:
        self.assertTrue(overlaps(Interval(_at(10, 30), _at(11, 30)), self.existing))

    def test_fully_contained_fails(self) -> None:
        self.assertTrue(overlaps(Interval(_at(10, 15), _at(10, 45)), self.existing))

    def test_overlap_is_symmetric(self) -> None:
        other = Interval(_at(9, 30), _at(10, 30))
        self.assertEqual(overlaps(other, self.existing), overlaps(self.existing, other))


class TestInterval(unittest.TestCase):
    def test_rejects_empty_and_reversed_ranges(self) -> None:
        with self.assertRaises(InvalidInterval):
            Interval(_at(10), _at(10))
        with self.assertRaises(InvalidInterval):
            Interval(_at(10, 30), _at(9, 30))


class TestNormalize(unittest.TestCase):
    def test_grid_hour_yields_one_hour_slot(self) -> None:
        start, end = normalize(date(2025, 9, 5), 9)

        self.assertEqual(start, _at(9))
        self.assertEqual(end, _at(10))

    def test_explicit_start_and_end(self) -> None:
        start, end = normalize(date(2025, 9, 5), time(14, 30), time(16, 0))

        self.assertEqual(start, _at(14, 30))
        self.assertEqual(end, _at(16))

    def test_explicit_end_before_start_fails(self) -> None:
        with self.assertRaises(InvalidInterval):
            normalize(date(2025, 9, 5), time(10, 30), time(9, 30))

    def test_local_zone_is_converted_to_utc(self) -> None:
        plus_two = timezone(timedelta(hours=2))
        start, end = normalize(date(2025, 9, 5), 9, tz=plus_two)

        self.assertEqual(start, _at(7))
        self.assertEqual(end, _at(8))
        self.assertEqual(start.tzinfo, UTC)

    def test_default_slot_stays_one_hour_across_dst_changes(self) -> None:
        berlin = ZoneInfo("Europe/Berlin")

        gap_start, gap_end = normalize(date(2025, 3, 30), time(2, 30), tz=berlin)
        self.assertEqual(gap_start, datetime(2025, 3, 30, 1, 30, tzinfo=UTC))
        self.assertEqual(gap_end - gap_start, timedelta(hours=1))

        fold_start, fold_end = normalize(date(2025, 10, 26), time(2, 30), tz=berlin)
        self.assertEqual(fold_start, datetime(2025, 10, 26, 0, 30, tzinfo=UTC))
        self.assertEqual(fold_end - fold_start, timedelta(hours=1))

    def test_out_of_range_hour_fails(self) -> None:
        with self.assertRaises(InvalidInterval):
            normalize(date(2025, 9, 5), 24)

    def test_form_grid_covers_nine_to_six(self) -> None:
        self.assertEqual(FORM_HOURS[0], 9)
        self.assertEqual(FORM_HOURS[-1], 18)
        self.assertEqual(len(FORM_HOURS), 10)


class TestTimestamps(unittest.TestCase):
    def test_parse_accepts_trailing_z(self) -> None:
        self.assertEqual(parse_timestamp("2025-09-05T09:00:00Z"), _at(9))

    def test_parse_converts_offsets(self) -> None:
        self.assertEqual(parse_timestamp("2025-09-05T11:00:00+02:00"), _at(9))

    def test_naive_values_use_facility_zone(self) -> None:
        plus_two = timezone(timedelta(hours=2))
        self.assertEqual(to_utc(datetime(2025, 9, 5, 11, 0), plus_two), _at(9))

    def test_parse_rejects_garbage(self) -> None:
        with self.assertRaises(ValueError):
            parse_timestamp("next tuesday")

    def test_day_bounds_follow_local_midnight(self) -> None:
        plus_two = timezone(timedelta(hours=2))
        bounds = day_bounds(date(2025, 9, 5), plus_two)

        self.assertEqual(bounds.start, datetime(2025, 9, 4, 22, 0, tzinfo=UTC))
        self.assertEqual(bounds.end, datetime(2025, 9, 5, 22, 0, tzinfo=UTC))


if __name__ == "__main__":
    unittest.main()

import unittest
from datetime import datetime

from club_manager import ReservationRecord, has_conflict, has_time_overlap, overlaps_window, parse_iso_datetime


def _reservation(reservation_id: int, resource_id: int, start: datetime, end: datetime) -> ReservationRecord:
    return ReservationRecord(
        id=reservation_id,
        resource_id=resource_id,
        title="합주",
        start=start,
        end=end,
        user_ids=(1,),
    )


class TestTimeOverlap(unittest.TestCase):
    def setUp(self) -> None:
        self.exist_start = datetime(2026, 3, 2, 14, 0)
        self.exist_end = datetime(2026, 3, 2, 16, 0)

    def test_non_overlapping_before_passes(self) -> None:
        self.assertFalse(
            has_time_overlap(
                datetime(2026, 3, 2, 12, 0),
                datetime(2026, 3, 2, 13, 59),
                self.exist_start,
                self.exist_end,
            )
        )

    def test_exactly_touching_boundary_passes(self) -> None:
        self.assertFalse(
            has_time_overlap(
                datetime(2026, 3, 2, 16, 0),
                datetime(2026, 3, 2, 18, 0),
                self.exist_start,
                self.exist_end,
            )
        )
        self.assertFalse(
            has_time_overlap(
                datetime(2026, 3, 2, 12, 0),
                datetime(2026, 3, 2, 14, 0),
                self.exist_start,
                self.exist_end,
            )
        )

    def test_partially_overlapping_fails(self) -> None:
        self.assertTrue(
            has_time_overlap(
                datetime(2026, 3, 2, 15, 0),
                datetime(2026, 3, 2, 17, 0),
                self.exist_start,
                self.exist_end,
            )
        )

    def test_fully_contained_and_containing_fail(self) -> None:
        self.assertTrue(
            has_time_overlap(
                datetime(2026, 3, 2, 14, 30),
                datetime(2026, 3, 2, 15, 30),
                self.exist_start,
                self.exist_end,
            )
        )
        self.assertTrue(
            has_time_overlap(
                datetime(2026, 3, 2, 13, 0),
                datetime(2026, 3, 2, 17, 0),
                self.exist_start,
                self.exist_end,
            )
        )

    def test_malformed_interval_raises(self) -> None:
        with self.assertRaises(ValueError):
            has_time_overlap(self.exist_end, self.exist_start, self.exist_start, self.exist_end)


class TestHasConflict(unittest.TestCase):
    def setUp(self) -> None:
        self.existing = [
            _reservation(1, 10, datetime(2026, 3, 2, 14, 0), datetime(2026, 3, 2, 16, 0)),
            _reservation(2, 20, datetime(2026, 3, 2, 9, 0), datetime(2026, 3, 2, 18, 0)),
        ]

    def test_only_same_resource_is_scanned(self) -> None:
        self.assertFalse(
            has_conflict(self.existing, 10, datetime(2026, 3, 2, 10, 0), datetime(2026, 3, 2, 12, 0))
        )
        self.assertTrue(
            has_conflict(self.existing, 20, datetime(2026, 3, 2, 10, 0), datetime(2026, 3, 2, 12, 0))
        )

    def test_excluded_reservation_does_not_conflict_with_itself(self) -> None:
        self.assertFalse(
            has_conflict(
                self.existing,
                10,
                datetime(2026, 3, 2, 14, 0),
                datetime(2026, 3, 2, 16, 0),
                exclude_reservation_id=1,
            )
        )
        self.assertTrue(
            has_conflict(self.existing, 10, datetime(2026, 3, 2, 14, 0), datetime(2026, 3, 2, 16, 0))
        )

    def test_touching_boundary_is_free(self) -> None:
        self.assertFalse(
            has_conflict(self.existing, 10, datetime(2026, 3, 2, 16, 0), datetime(2026, 3, 2, 18, 0))
        )

    def test_malformed_interval_raises(self) -> None:
        with self.assertRaises(ValueError):
            has_conflict(self.existing, 10, datetime(2026, 3, 2, 16, 0), datetime(2026, 3, 2, 16, 0))


class TestOverlapsWindow(unittest.TestCase):
    def test_open_bounds(self) -> None:
        start = datetime(2026, 3, 2, 14, 0)
        end = datetime(2026, 3, 2, 16, 0)
        self.assertTrue(overlaps_window(start, end, None, None))
        self.assertTrue(overlaps_window(start, end, datetime(2026, 3, 2, 15, 0), None))
        self.assertFalse(overlaps_window(start, end, datetime(2026, 3, 2, 16, 0), None))
        self.assertFalse(overlaps_window(start, end, None, datetime(2026, 3, 2, 14, 0)))
        self.assertTrue(overlaps_window(start, end, datetime(2026, 3, 2, 10, 0), datetime(2026, 3, 2, 14, 1)))


class TestParseIsoDatetime(unittest.TestCase):
    def test_offset_is_converted_to_naive_utc(self) -> None:
        self.assertEqual(parse_iso_datetime("2026-03-02T14:00:00+09:00"), datetime(2026, 3, 2, 5, 0))

    def test_naive_value_is_kept(self) -> None:
        self.assertEqual(parse_iso_datetime("2026-03-02T14:00"), datetime(2026, 3, 2, 14, 0))

    def test_malformed_value_raises(self) -> None:
        with self.assertRaises(ValueError):
            parse_iso_datetime("tomorrow")


if __name__ == "__main__":
    unittest.main()

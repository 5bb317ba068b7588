"""
Unit tests for room conflict detection.

A conflict exists when two slots share room and day and their half-open
[start, end) intervals overlap. Touching endpoints are not a conflict.
"""

import unittest

from registrar.scheduling import (
    ScheduleSlot,
    find_conflicts,
    has_conflict,
    normalize_time,
    slot_statistics,
    time_to_minutes,
)


def slot(start: str, end: str, room: str = "A", day: str = "Monday", slot_id=None, session_type: str = "lecture") -> ScheduleSlot:
    return ScheduleSlot(room=room, day_of_week=day, start_time=start, end_time=end, session_type=session_type, id=slot_id)


class TestTimes(unittest.TestCase):
    def test_time_to_minutes(self) -> None:
        self.assertEqual(time_to_minutes("00:00"), 0)
        self.assertEqual(time_to_minutes("9:05"), 545)
        self.assertEqual(time_to_minutes("23:59"), 1439)

    def test_invalid_times(self) -> None:
        for bad in ("24:00", "0900", "12:60", "ab:cd", ""):
            with self.assertRaises(ValueError):
                time_to_minutes(bad)

    def test_int_lenient_forms_are_rejected(self) -> None:
        # int() would accept a sign, underscores and non-ASCII digits
        for bad in ("+9:00", "-0:30", "1_0:00", "\u0660\u0669:\u0660\u0660", "09:0\u0665", " 9 :00"):
            with self.assertRaises(ValueError):
                time_to_minutes(bad)

    def test_normalize_pads_hours(self) -> None:
        self.assertEqual(normalize_time("9:00"), "09:00")

    def test_minutes_not_lexicographic(self) -> None:
        # "9:30" sorts after "10:00" as text
        self.assertTrue(has_conflict(slot("9:30", "10:30"), [slot("10:00", "11:00", slot_id="x")]))


class TestConflicts(unittest.TestCase):
    def test_overlap_same_room_and_day(self) -> None:
        self.assertTrue(has_conflict(slot("09:00", "10:00"), [slot("09:30", "10:30", slot_id="s1")]))

    def test_touching_endpoints_do_not_conflict(self) -> None:
        self.assertFalse(has_conflict(slot("09:00", "10:00"), [slot("10:00", "11:00", slot_id="s1")]))

    def test_different_room_no_conflict(self) -> None:
        self.assertFalse(has_conflict(slot("09:00", "10:00"), [slot("09:00", "10:00", room="B", slot_id="s1")]))

    def test_different_day_no_conflict(self) -> None:
        self.assertFalse(has_conflict(slot("09:00", "10:00"), [slot("09:00", "10:00", day="Tuesday", slot_id="s1")]))

    def test_containment_conflicts(self) -> None:
        self.assertTrue(has_conflict(slot("08:00", "12:00"), [slot("09:00", "10:00", slot_id="s1")]))
        self.assertTrue(has_conflict(slot("09:15", "09:45"), [slot("09:00", "10:00", slot_id="s1")]))

    def test_self_is_excluded_on_update(self) -> None:
        existing = [slot("09:00", "10:00", slot_id="s1")]
        self.assertFalse(has_conflict(slot("09:00", "10:00"), existing, exclude_id="s1"))

    def test_exclusion_only_skips_that_slot(self) -> None:
        existing = [slot("09:00", "10:00", slot_id="s1"), slot("09:30", "11:00", slot_id="s2")]
        found = find_conflicts(slot("09:00", "10:00"), existing, exclude_id="s1")
        self.assertEqual([s.id for s in found], ["s2"])

    def test_accepted_slot_is_detected_as_duplicate(self) -> None:
        existing = [slot("13:00", "14:00", slot_id="s1")]
        candidate = slot("09:00", "10:00")
        self.assertFalse(has_conflict(candidate, existing))
        existing.append(ScheduleSlot(room="A", day_of_week="Monday", start_time="09:00", end_time="10:00", id="s2"))
        self.assertTrue(has_conflict(candidate, existing))

    def test_find_conflicts_lists_every_overlap(self) -> None:
        existing = [
            slot("08:00", "09:30", slot_id="s1"),
            slot("09:45", "11:00", slot_id="s2"),
            slot("11:00", "12:00", slot_id="s3"),
        ]
        found = find_conflicts(slot("09:00", "11:00"), existing)
        self.assertEqual([s.id for s in found], ["s1", "s2"])


class TestSlotStatistics(unittest.TestCase):
    def test_counts(self) -> None:
        slots = [
            slot("08:00", "09:00", room="A", day="Wednesday", session_type="lab"),
            slot("09:00", "10:00", room="A", day="Monday"),
            slot("10:00", "11:00", room="B", day="Monday"),
        ]
        stats = slot_statistics(slots)
        self.assertEqual(stats["total"], 3)
        self.assertEqual(stats["by_day"], [{"day_of_week": "Monday", "count": 2}, {"day_of_week": "Wednesday", "count": 1}])
        self.assertEqual(stats["by_session_type"], [{"session_type": "lab", "count": 1}, {"session_type": "lecture", "count": 2}])
        self.assertEqual(stats["by_room"], [{"room": "A", "count": 2}, {"room": "B", "count": 1}])


if __name__ == "__main__":
    unittest.main()

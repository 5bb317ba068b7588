"""
Room timetable conflict detection.

A slot is a weekly occupation of one room on one day. Two slots conflict
when they share room and day and their half-open intervals overlap:
    start < other_end AND other_start < end
Touching endpoints (end == other_start) do not conflict.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Literal, Optional, Sequence, get_args

Day = Literal["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
SessionType = Literal["lecture", "lab", "tutorial", "exam"]

DAYS: tuple[str, ...] = get_args(Day)
SESSION_TYPES: tuple[str, ...] = get_args(SessionType)

TIME_PATTERN = r"^([01]?[0-9]|2[0-3]):([0-5][0-9])$"
_TIME_RE = re.compile(TIME_PATTERN)


@dataclass(frozen=True)
class ScheduleSlot:
    room: str
    day_of_week: str
    start_time: str
    end_time: str
    session_type: str = "lecture"
    id: Optional[str] = None
    course_id: Optional[str] = None

    @property
    def start_minutes(self) -> int:
        return time_to_minutes(self.start_time)

    @property
    def end_minutes(self) -> int:
        return time_to_minutes(self.end_time)


def time_to_minutes(hhmm: str) -> int:
    """Minutes since midnight for an ASCII 'H:MM' or 'HH:MM' string; ValueError otherwise."""
    match = _TIME_RE.fullmatch(str(hhmm).strip())
    if not match:
        raise ValueError(f"Invalid time: {hhmm!r}")
    return int(match.group(1)) * 60 + int(match.group(2))


def minutes_to_time(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def normalize_time(hhmm: str) -> str:
    return minutes_to_time(time_to_minutes(hhmm))


def intervals_overlap(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    return a_start < b_end and b_start < a_end


def find_conflicts(
    candidate: ScheduleSlot,
    existing: Iterable[ScheduleSlot],
    exclude_id: Optional[str] = None,
) -> list[ScheduleSlot]:
    """
    Existing slots that overlap the candidate in the same room and day.
    The slot whose id equals exclude_id is ignored (a slot being moved does
    not conflict with its own previous position).
    """
    start = candidate.start_minutes
    end = candidate.end_minutes
    out: list[ScheduleSlot] = []
    for slot in existing:
        if slot.room != candidate.room or slot.day_of_week != candidate.day_of_week:
            continue
        if exclude_id is not None and slot.id == exclude_id:
            continue
        if intervals_overlap(start, end, slot.start_minutes, slot.end_minutes):
            out.append(slot)
    return out


def has_conflict(
    candidate: ScheduleSlot,
    existing: Iterable[ScheduleSlot],
    exclude_id: Optional[str] = None,
) -> bool:
    return bool(find_conflicts(candidate, existing, exclude_id))


def slot_statistics(slots: Sequence[ScheduleSlot]) -> dict:
    by_day = {d: 0 for d in DAYS}
    by_type: dict[str, int] = {}
    by_room: dict[str, int] = {}
    for s in slots:
        by_day[s.day_of_week] = by_day.get(s.day_of_week, 0) + 1
        by_type[s.session_type] = by_type.get(s.session_type, 0) + 1
        by_room[s.room] = by_room.get(s.room, 0) + 1
    return {
        "total": len(slots),
        "by_day": [{"day_of_week": d, "count": n} for d, n in by_day.items() if n],
        "by_session_type": [{"session_type": t, "count": n} for t, n in sorted(by_type.items())],
        "by_room": [{"room": r, "count": n} for r, n in sorted(by_room.items(), key=lambda kv: (-kv[1], kv[0]))],
    }

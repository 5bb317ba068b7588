"""
Validation pipelines for grade and timetable writes.

Each operation runs its checks in order and stops at the first failure,
returning one of Ok / NotFound / Conflict / Invalid. Nothing is written
unless every check passed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from sqlalchemy.orm import Session

from registrar import grading, repository, scheduling
from registrar.models import Course, Evaluation, ScheduleSlot, Student

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Ok:
    value: Any


@dataclass(frozen=True)
class NotFound:
    entity: str


@dataclass(frozen=True)
class Conflict:
    reason: str
    conflicts: list = field(default_factory=list)


@dataclass(frozen=True)
class Invalid:
    reason: str


Outcome = Union[Ok, NotFound, Conflict, Invalid]


def _check_student_course(db: Session, student_id: str, course_id: str) -> Optional[Outcome]:
    if not db.get(Student, student_id):
        return NotFound("Student")
    if not db.get(Course, course_id):
        return NotFound("Course")
    if not repository.is_enrolled(db, student_id, course_id):
        return Invalid("Student is not enrolled in this course")
    return None


def submit_evaluation(db: Session, data: dict) -> Outcome:
    failure = _check_student_course(db, data["student_id"], data["course_id"])
    if failure:
        logger.info("evaluation_rejected student=%s course=%s outcome=%s", data["student_id"], data["course_id"], failure)
        return failure
    row = Evaluation(**data)
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info("evaluation_created id=%s student=%s course=%s", row.id, row.student_id, row.course_id)
    return Ok(row)


def update_evaluation(db: Session, evaluation_id: str, data: dict) -> Outcome:
    row = db.get(Evaluation, evaluation_id)
    if not row:
        return NotFound("Evaluation")
    failure = _check_student_course(db, data["student_id"], data["course_id"])
    if failure:
        logger.info("evaluation_update_rejected id=%s outcome=%s", evaluation_id, failure)
        return failure
    for k, v in data.items():
        setattr(row, k, v)
    db.commit()
    db.refresh(row)
    logger.info("evaluation_updated id=%s", row.id)
    return Ok(row)


def delete_evaluation(db: Session, evaluation_id: str) -> Outcome:
    row = db.get(Evaluation, evaluation_id)
    if not row:
        return NotFound("Evaluation")
    db.delete(row)
    db.commit()
    logger.info("evaluation_deleted id=%s", evaluation_id)
    return Ok(evaluation_id)


def student_course_average(db: Session, student_id: str, course_id: str) -> Outcome:
    if not db.get(Student, student_id):
        return NotFound("Student")
    if not db.get(Course, course_id):
        return NotFound("Course")
    evaluations = repository.find_evaluations(db, student_id, course_id)
    return Ok(
        {
            "student_id": student_id,
            "course_id": course_id,
            "average": grading.course_average(evaluations),
            "evaluations": evaluations,
            "total_weight": grading.round2(sum(e.weight for e in evaluations)),
        }
    )


def student_overall_average(db: Session, student_id: str) -> Outcome:
    if not db.get(Student, student_id):
        return NotFound("Student")
    rows = repository.find_course_averages(db, student_id)
    return Ok(
        {
            "student_id": student_id,
            "overall_average": grading.overall_average(rows),
            "courses": rows,
            "total_credits": sum(r.credits for r in rows),
        }
    )


def _candidate(data: dict, slot_id: Optional[str] = None) -> Union[scheduling.ScheduleSlot, Invalid]:
    try:
        start = scheduling.time_to_minutes(data["start_time"])
        end = scheduling.time_to_minutes(data["end_time"])
    except ValueError as exc:
        return Invalid(str(exc))
    if start >= end:
        return Invalid("start_time must be before end_time")
    room = str(data.get("room") or "").strip()
    if not room:
        return Invalid("room is required")
    return scheduling.ScheduleSlot(
        room=room,
        day_of_week=data["day_of_week"],
        start_time=scheduling.minutes_to_time(start),
        end_time=scheduling.minutes_to_time(end),
        session_type=data.get("session_type") or "lecture",
        id=slot_id,
        course_id=data.get("course_id"),
    )


def _slot_values(candidate: scheduling.ScheduleSlot) -> dict:
    return {
        "course_id": candidate.course_id,
        "day_of_week": candidate.day_of_week,
        "start_time": candidate.start_time,
        "end_time": candidate.end_time,
        "room": candidate.room,
        "session_type": candidate.session_type,
    }


def create_slot(db: Session, data: dict) -> Outcome:
    candidate = _candidate(data)
    if isinstance(candidate, Invalid):
        return candidate
    if not db.get(Course, candidate.course_id):
        return NotFound("Course")
    # Held until commit or rollback; concurrent writers for this room and day queue here.
    repository.lock_room_day(db, candidate.room, candidate.day_of_week)
    existing = repository.find_slots(db, candidate.room, candidate.day_of_week)
    conflicts = scheduling.find_conflicts(candidate, existing)
    if conflicts:
        db.rollback()
        logger.info(
            "slot_conflict room=%s day=%s start=%s end=%s conflicts=%s",
            candidate.room,
            candidate.day_of_week,
            candidate.start_time,
            candidate.end_time,
            len(conflicts),
        )
        return Conflict("Room is already booked for this time", conflicts)
    row = ScheduleSlot(**_slot_values(candidate))
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info("slot_created id=%s room=%s day=%s", row.id, row.room, row.day_of_week)
    return Ok(row)


def update_slot(db: Session, slot_id: str, data: dict) -> Outcome:
    row = db.get(ScheduleSlot, slot_id)
    if not row:
        return NotFound("Schedule slot")
    candidate = _candidate(data, slot_id=slot_id)
    if isinstance(candidate, Invalid):
        return candidate
    if not db.get(Course, candidate.course_id):
        return NotFound("Course")
    # Same room/day lock as create_slot.
    repository.lock_room_day(db, candidate.room, candidate.day_of_week)
    existing = repository.find_slots(db, candidate.room, candidate.day_of_week)
    conflicts = scheduling.find_conflicts(candidate, existing, exclude_id=slot_id)
    if conflicts:
        db.rollback()
        logger.info("slot_update_conflict id=%s room=%s day=%s", slot_id, candidate.room, candidate.day_of_week)
        return Conflict("Room is already booked for this time", conflicts)
    for k, v in _slot_values(candidate).items():
        setattr(row, k, v)
    db.commit()
    db.refresh(row)
    logger.info("slot_updated id=%s", row.id)
    return Ok(row)


def delete_slot(db: Session, slot_id: str) -> Outcome:
    row = db.get(ScheduleSlot, slot_id)
    if not row:
        return NotFound("Schedule slot")
    db.delete(row)
    db.commit()
    logger.info("slot_deleted id=%s", slot_id)
    return Ok(slot_id)


def check_slot(db: Session, data: dict, exclude_id: Optional[str] = None) -> Outcome:
    candidate = _candidate(data)
    if isinstance(candidate, Invalid):
        return candidate
    existing = repository.find_slots(db, candidate.room, candidate.day_of_week)
    return Ok(scheduling.find_conflicts(candidate, existing, exclude_id=exclude_id))
